"""
StoryFrame CLI - Command-line interface for storyboard generation.

기능:
- 스토리 텍스트 → 멀티 씬 storyboard (씬당 A/B 프레임)
- 참조 이미지 (main / secondary / background / art style / logo)
- continue: 기존 storyboard JSON에 씬 1개 추가
"""

import argparse
import asyncio
import base64
import json
import mimetypes
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent.parent))

from pipeline import StoryboardPipeline
from schemas import (
    AspectRatio,
    Base64Asset,
    ContinuationRequest,
    GenerationProgress,
    GenerationRequest,
    ReferenceAssets,
    Storyboard,
)
from utils.constants import ALLOWED_FRAME_COUNTS
from utils.errors import GenerationError, describe_error


def print_banner():
    """Print StoryFrame banner."""
    banner = """
=====================================================================
   ███████╗████████╗ ██████╗ ██████╗ ██╗   ██╗
   ██╔════╝╚══██╔══╝██╔═══██╗██╔══██╗╚██╗ ██╔╝
   ███████╗   ██║   ██║   ██║██████╔╝ ╚████╔╝     F R A M E
   ╚════██║   ██║   ██║   ██║██╔══██╗  ╚██╔╝
   ███████║   ██║   ╚██████╔╝██║  ██║   ██║
   ╚══════╝   ╚═╝    ╚═════╝ ╚═╝  ╚═╝   ╚═╝

              AI-Powered Cinematic Storyboard Generator
=====================================================================
"""
    print(banner)


def load_asset(path: Optional[str]) -> Optional[Base64Asset]:
    """이미지 파일 → Base64Asset"""
    if not path:
        return None
    file_path = Path(path)
    if not file_path.is_file():
        raise FileNotFoundError(f"Reference image not found: {path}")
    mime_type = mimetypes.guess_type(file_path.name)[0] or "image/png"
    data = base64.b64encode(file_path.read_bytes()).decode("ascii")
    return Base64Asset(mime_type=mime_type, data=data)


def build_assets(args: argparse.Namespace) -> ReferenceAssets:
    return ReferenceAssets(
        logo=load_asset(args.logo),
        main_character=load_asset(args.main_character),
        secondary_characters=[load_asset(p) for p in args.secondary or []],
        background=load_asset(args.background),
        art_style=load_asset(args.art_style),
    )


def print_progress(event: GenerationProgress):
    eta = event.estimated_time_remaining
    eta_text = f" | ETA {eta:.0f}s" if eta is not None else ""
    print(f"  [{event.progress:5.1f}%] {event.phase.value:<12} {event.message}{eta_text}", flush=True)


def print_summary(storyboard: Storyboard, output_path: Path):
    """Print generation summary."""
    print("\n" + "=" * 60)
    print("ALL DONE! Your storyboard is ready.")
    print("=" * 60)
    if storyboard.story_world:
        print(f"Premise: {storyboard.story_world.premise}")
    print(f"Scenes: {len(storyboard.scenes)}")
    print(f"Aspect Ratio: {storyboard.aspect_ratio.value}")
    for scene in storyboard.scenes:
        failed = [f.id for f in scene.frames if f.is_error_sentinel]
        status = f" (failed frames: {', '.join(failed)})" if failed else ""
        print(f"  {scene.id}. {scene.title}{status}")
    print(f"\nOutput: {output_path}")
    print("=" * 60 + "\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storyframe",
        description="Generate a cinematic storyboard from a story.",
    )

    def add_asset_options(p: argparse.ArgumentParser):
        p.add_argument("--main-character", help="Main character reference image")
        p.add_argument("--secondary", action="append", help="Secondary character reference image (repeatable)")
        p.add_argument("--background", help="Background reference image")
        p.add_argument("--art-style", help="Art style reference image")
        p.add_argument("--logo", help="Logo reference image")
        p.add_argument("--output", "-o", default="storyboard.json", help="Output JSON path")
        p.add_argument("--quiet", "-q", action="store_true", help="Hide progress lines")

    parser.add_argument("story", help="Story text, or @path to read it from a file")
    parser.add_argument("--frames", type=int, default=4, choices=ALLOWED_FRAME_COUNTS)
    parser.add_argument("--aspect", default="16:9", choices=[a.value for a in AspectRatio])
    add_asset_options(parser)
    return parser


def build_continue_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storyframe continue",
        description="Append one scene to an existing storyboard JSON.",
    )
    parser.add_argument("storyboard", help="Existing storyboard JSON file")
    parser.add_argument("--instruction", help="Custom direction for the next scene")
    parser.add_argument("--aspect", choices=[a.value for a in AspectRatio])
    parser.add_argument("--main-character", help="Main character reference image")
    parser.add_argument("--secondary", action="append", help="Secondary character reference image (repeatable)")
    parser.add_argument("--background", help="Background reference image")
    parser.add_argument("--art-style", help="Art style reference image")
    parser.add_argument("--logo", help="Logo reference image")
    parser.add_argument("--output", "-o", help="Output JSON path (default: overwrite the input)")
    parser.add_argument("--quiet", "-q", action="store_true", help="Hide progress lines")
    return parser


def read_story(value: str) -> str:
    if value.startswith("@"):
        return Path(value[1:]).read_text(encoding="utf-8")
    return value


def write_storyboard(storyboard: Storyboard, output_path: Path):
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(storyboard.to_json_dict(), f, ensure_ascii=False, indent=2)


async def run_generate(args: argparse.Namespace) -> Storyboard:
    request = GenerationRequest(
        story=read_story(args.story),
        frame_count=args.frames,
        aspect_ratio=AspectRatio(args.aspect),
        assets=build_assets(args),
    )
    print(f"\nGenerating {request.scene_count} scene(s) ({request.frame_count} frames, {request.aspect_ratio.value})\n")
    pipeline = StoryboardPipeline()
    return await pipeline.generate(request, on_progress=None if args.quiet else print_progress)


async def run_continue(args: argparse.Namespace) -> Storyboard:
    with open(args.storyboard, "r", encoding="utf-8") as f:
        storyboard = Storyboard.model_validate(json.load(f))

    request = ContinuationRequest(
        storyboard=storyboard,
        assets=build_assets(args),
        custom_instruction=args.instruction,
        aspect_ratio=AspectRatio(args.aspect) if args.aspect else None,
    )
    print(f"\nAdding scene {storyboard.last_scene.id + 1 if storyboard.last_scene else 1}\n")
    pipeline = StoryboardPipeline()
    scene = await pipeline.continue_storyboard(request, on_progress=None if args.quiet else print_progress)
    return storyboard.model_copy(update={"scenes": storyboard.scenes + [scene]})


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    argv = list(sys.argv[1:] if argv is None else argv)
    load_dotenv()
    print_banner()

    if argv and argv[0] == "continue":
        args = build_continue_parser().parse_args(argv[1:])
        output_path = Path(args.output or args.storyboard)
        runner = run_continue
    else:
        args = build_parser().parse_args(argv)
        output_path = Path(args.output)
        runner = run_generate

    try:
        storyboard = asyncio.run(runner(args))
        write_storyboard(storyboard, output_path)
        print_summary(storyboard, output_path)

    except KeyboardInterrupt:
        print("\n\n[INTERRUPTED] Generation interrupted by user.")
        sys.exit(1)

    except (ValidationError, FileNotFoundError, json.JSONDecodeError) as e:
        print(f"\n[ERROR] Invalid input: {e}")
        sys.exit(2)

    except GenerationError as e:
        print(f"\n\n[ERROR] {describe_error(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
