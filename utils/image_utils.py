"""
이미지 바이트 검증 및 data URL / error sentinel 생성 (Pillow)
"""

import base64
import io
import textwrap

from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError

from utils.constants import FRAME_ERROR_MARKER, KNOWN_ERROR_URL_TOKENS, MIN_IMAGE_BYTES


def validate_image_bytes(data: bytes, min_bytes: int = MIN_IMAGE_BYTES) -> None:
    """
    생성된 이미지가 사용 가능한지 검사. 실패 시 ValueError.

    - 최소 크기 초과
    - Pillow로 디코딩 가능
    """
    if not data:
        raise ValueError("empty image payload")
    if len(data) <= min_bytes:
        raise ValueError(f"image payload too small ({len(data)} bytes)")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"image payload is not decodable: {e}")


def to_data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def is_error_sentinel(url: str) -> bool:
    return any(token in url for token in KNOWN_ERROR_URL_TOKENS)


def render_error_sentinel(frame_id: str, reason: str, aspect_ratio: str = "16:9") -> str:
    """
    Generate a visible error image for a frame that could not be generated.

    Returns:
        data URL tagged with the frame-error marker
    """
    width, height = (640, 360) if aspect_ratio == "16:9" else (360, 640)

    img = Image.new("RGB", (width, height), color=(61, 0, 0))
    draw = ImageDraw.Draw(img)
    font = ImageFont.load_default()

    draw.rectangle([8, 8, width - 9, height - 9], outline=(200, 60, 60), width=3)
    draw.text((32, 32), f"Scene {frame_id}: frame generation failed", font=font, fill="white")

    wrapper = textwrap.TextWrapper(width=48 if width > height else 28)
    reason_text = "\n".join(wrapper.wrap(text=reason)[:6])
    draw.text((32, 72), reason_text, font=font, fill="lightgray")

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;{FRAME_ERROR_MARKER};base64,{encoded}"
