"""
Gemini capability boundary (google-genai SDK, async).

파이프라인이 가정하는 두 가지 능력만 노출합니다:
- generate_structured(contents, schema) -> parsed JSON
- generate_image(parts, aspect_ratio) -> GeneratedImage

모든 호출은 호출별 timeout을 가지며, 실패는 LLMCallError / SchemaParseError /
ConfigurationError 로 정규화됩니다.
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from config import GenerationConfig, resolve_api_key
from utils.errors import ConfigurationError, LLMCallError, SchemaParseError
from utils.llm_utils import parse_llm_json
from utils.logger import get_logger

logger = get_logger("gemini")

# 프롬프트 part: {"text": str} 또는 {"inline_data": {"mime_type": str, "data": base64 str}}
PromptPart = Dict[str, Any]


@dataclass
class GeneratedImage:
    mime_type: str
    data: bytes


class GeminiClient:
    """
    Async wrapper around ``genai.Client``.

    파이프라인 run마다 주입되며, 전역 싱글톤을 사용하지 않습니다.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
    ):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key (없으면 GEMINI_API_KEY / GOOGLE_API_KEY)
            config: 모델명/timeout 설정

        Raises:
            ConfigurationError: API key 없음
        """
        self.config = config or GenerationConfig()
        self.api_key = resolve_api_key(api_key)
        self._client = genai.Client(api_key=self.api_key)

    # ========================================================================
    # Structured output
    # ========================================================================

    async def generate_structured(
        self,
        contents: Union[str, List[PromptPart]],
        schema: Dict[str, Any],
        model: Optional[str] = None,
    ) -> Any:
        """
        JSON-schema 제약 텍스트 생성.

        Args:
            contents: 프롬프트 문자열 또는 멀티모달 parts
            schema: response schema (schemas.response_schemas)
            model: 모델명 (기본: config.models.text)

        Returns:
            파싱된 JSON (dict/list)
        """
        model = model or self.config.models.text
        generation_config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=schema,
        )
        response = await self._call(
            model,
            contents,
            generation_config,
            timeout=self.config.timeouts.text_call_timeout_sec,
        )

        text = response.text
        if not text:
            raise SchemaParseError(f"Model {model} returned an empty response")
        try:
            return parse_llm_json(text)
        except ValueError as e:
            raise SchemaParseError(f"Model {model} returned invalid JSON: {e}", raw=text)

    # ========================================================================
    # Image generation
    # ========================================================================

    async def generate_image(
        self,
        parts: List[PromptPart],
        aspect_ratio: str,
        model: Optional[str] = None,
    ) -> GeneratedImage:
        """
        멀티모달 parts로 이미지 1장 생성.

        Args:
            parts: 참조 이미지 + 텍스트 parts (순서 유지)
            aspect_ratio: "16:9" 또는 "9:16"
            model: 모델명 (기본: config.models.image)

        Returns:
            GeneratedImage (inline bytes)
        """
        model = model or self.config.models.image
        generation_config = types.GenerateContentConfig(
            response_modalities=["IMAGE"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
        )
        response = await self._call(
            model,
            parts,
            generation_config,
            timeout=self.config.timeouts.image_call_timeout_sec,
        )

        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content else None) or []:
                inline = part.inline_data
                if inline and inline.data:
                    return GeneratedImage(
                        mime_type=inline.mime_type or "image/png",
                        data=inline.data,
                    )

        finish = None
        if response.candidates:
            finish = response.candidates[0].finish_reason
        raise LLMCallError(f"No image data in response (finish_reason={finish})", model=model)

    # ========================================================================
    # Internals
    # ========================================================================

    async def _call(
        self,
        model: str,
        contents: Union[str, List[PromptPart]],
        generation_config: types.GenerateContentConfig,
        timeout: float,
    ) -> types.GenerateContentResponse:
        try:
            return await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=model,
                    contents=self._to_contents(contents),
                    config=generation_config,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise LLMCallError(f"{model} call timed out after {timeout:.0f}s", model=model)
        except genai_errors.APIError as e:
            if e.code in (401, 403):
                raise ConfigurationError(f"Gemini rejected the API key ({e.code})", details=str(e))
            raise LLMCallError(f"{model} call failed ({e.code}): {e.message}", model=model, details=str(e))

    @staticmethod
    def _to_contents(contents: Union[str, List[PromptPart]]) -> Union[str, types.Content]:
        if isinstance(contents, str):
            return contents

        parts = []
        for part in contents:
            if "text" in part:
                parts.append(types.Part.from_text(text=part["text"]))
            elif "inline_data" in part:
                inline = part["inline_data"]
                parts.append(types.Part.from_bytes(
                    data=base64.b64decode(inline["data"]),
                    mime_type=inline["mime_type"],
                ))
            else:
                raise ValueError(f"Unsupported prompt part keys: {sorted(part)}")
        return types.Content(role="user", parts=parts)
