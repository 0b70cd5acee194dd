"""
Unit tests for CharacterConsistencyAgent.

Tests cover:
1. Reference analysis (success, fallback, per-run cache)
2. Enhanced blueprint composition
"""
import pytest

from agents.character_agent import CharacterConsistencyAgent
from conftest import FakeLLM, make_asset, profile_payload
from schemas import CharacterProfile, CharacterRole
from utils.error_manager import ErrorManager
from utils.errors import LLMCallError


# ==========================================================================
# Test 1: Analysis
# ==========================================================================

class TestAnalyze:
    """One reference image → one CharacterProfile, never an exception."""

    @pytest.mark.asyncio
    async def test_analyze_main(self, config):
        llm = FakeLLM()
        agent = CharacterConsistencyAgent(llm, config)
        profile = await agent.analyze(make_asset(), CharacterRole.MAIN)

        assert profile.complete_description.startswith("A petite red fox")
        call = llm.calls_of("profile")[0]
        assert call.model == config.models.vision
        assert "MAIN CHARACTER" in call.contents[0]["text"]
        assert "inline_data" in call.contents[1]

    @pytest.mark.asyncio
    async def test_failure_returns_fallback(self, config):
        llm = FakeLLM(profile=LLMCallError("vision down"))
        agent = CharacterConsistencyAgent(llm, config)
        profile = await agent.analyze(make_asset(), CharacterRole.SECONDARY, index=2)

        assert profile == CharacterProfile.fallback()
        errors = ErrorManager.get_recent_errors(service="CharacterConsistencyAgent")
        assert errors and errors[0]["severity"] == "warning"

    @pytest.mark.asyncio
    async def test_malformed_profile_returns_fallback(self, config):
        payload = profile_payload()
        del payload["completeDescription"]
        agent = CharacterConsistencyAgent(FakeLLM(profile=payload), config)
        assert await agent.analyze(make_asset()) == CharacterProfile.fallback()

    @pytest.mark.asyncio
    async def test_identical_upload_analyzed_once(self, config):
        llm = FakeLLM()
        agent = CharacterConsistencyAgent(llm, config)
        asset = make_asset()
        first = await agent.analyze(asset)
        second = await agent.analyze(asset.model_copy())
        assert first == second
        assert len(llm.calls_of("profile")) == 1

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, config):
        llm = FakeLLM(profile=[LLMCallError("flaky"), profile_payload()])
        agent = CharacterConsistencyAgent(llm, config)
        asset = make_asset()
        assert await agent.analyze(asset) == CharacterProfile.fallback()
        assert (await agent.analyze(asset)).complete_description.startswith("A petite")

    @pytest.mark.asyncio
    async def test_cache_is_per_agent(self, config):
        llm = FakeLLM()
        asset = make_asset()
        await CharacterConsistencyAgent(llm, config).analyze(asset)
        await CharacterConsistencyAgent(llm, config).analyze(asset)
        assert len(llm.calls_of("profile")) == 2

    @pytest.mark.asyncio
    async def test_analyze_references(self, config):
        llm = FakeLLM(profile=lambda contents, schema, model: profile_payload(
            "main" if "MAIN CHARACTER" in contents[0]["text"] else "secondary"
        ))
        agent = CharacterConsistencyAgent(llm, config)
        main, secondaries = await agent.analyze_references(make_asset(), [make_asset(), make_asset()])
        assert main.complete_description == "main"
        assert [p.complete_description for p in secondaries] == ["secondary", "secondary"]


# ==========================================================================
# Test 2: Blueprint composition
# ==========================================================================

class TestComposeBlueprints:
    """Profiles are merged into verbatim blueprint text."""

    def test_main_blueprint_contains_description(self):
        profile = CharacterProfile.model_validate(profile_payload("FOX-DESCRIPTION"))
        result = CharacterConsistencyAgent.compose_blueprints("original fox", profile, [])

        blueprint = result.main_character_blueprint
        assert blueprint.startswith("[ENHANCED CHARACTER BLUEPRINT - VERBATIM COPY ACROSS ALL SCENES]")
        assert "ORIGINAL BLUEPRINT: original fox" in blueprint
        assert "COMPLETE VERBATIM DESCRIPTION (COPY THIS EXACTLY IN ALL SCENES):\nFOX-DESCRIPTION" in blueprint
        assert "CRITICAL CONSISTENCY RULE" in blueprint
        assert "- HAIR: Russet fur, cream chest" in blueprint
        assert result.main_profile == profile

    def test_no_main_profile_keeps_original(self):
        result = CharacterConsistencyAgent.compose_blueprints("original fox", None, [])
        assert result.main_character_blueprint == "original fox"
        assert result.additional_character_blueprints == []

    def test_secondary_blueprints_numbered(self):
        profiles = [
            CharacterProfile.model_validate(profile_payload("owl")),
            CharacterProfile.model_validate(profile_payload("lynx")),
        ]
        result = CharacterConsistencyAgent.compose_blueprints("fox", None, profiles)
        first, second = result.additional_character_blueprints
        assert first.startswith("[SECONDARY CHARACTER 1 BLUEPRINT - VERBATIM COPY]")
        assert "COMPLETE DESCRIPTION: owl" in first
        assert second.startswith("[SECONDARY CHARACTER 2 BLUEPRINT - VERBATIM COPY]")

    @pytest.mark.asyncio
    async def test_enhance_without_references_skips_llm(self, config):
        llm = FakeLLM()
        result = await CharacterConsistencyAgent(llm, config).enhance_blueprint("fox")
        assert result.main_character_blueprint == "fox"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_enhance_with_main_reference(self, config):
        llm = FakeLLM(profile=profile_payload("FOX-DESCRIPTION"))
        result = await CharacterConsistencyAgent(llm, config).enhance_blueprint("fox", make_asset())
        assert "FOX-DESCRIPTION" in result.main_character_blueprint
