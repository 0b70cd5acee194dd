"""
LLM 응답 파싱 유틸리티

Gemini가 반환하는 마크다운 래핑 JSON을 안전하게 파싱하고,
결과를 pydantic 모델로 검증합니다 (parse-or-reject).
"""
import json
from typing import Any, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from utils.errors import SchemaParseError

T = TypeVar("T", bound=BaseModel)


def parse_llm_json(text: str) -> Any:
    """LLM 응답에서 마크다운 코드블록 제거 후 JSON 파싱.

    지원 패턴:
      - ```json ... ```
      - ``` ... ```
      - 순수 JSON
    """
    text = text.strip()
    if text.startswith("```"):
        # split 방식: ```json\n{...}\n```  →  ["", "json\n{...}\n", ""]
        parts = text.split("```")
        if len(parts) >= 3:
            inner = parts[1]
            if inner.startswith("json"):
                inner = inner[4:]
            text = inner.strip()
        else:
            # 닫는 ``` 없는 경우 fallback
            text = text.split("\n", 1)[1] if "\n" in text else text[3:]
            if text.endswith("```"):
                text = text[:-3]
            text = text.strip()
    return json.loads(text)


def parse_model_output(raw: Union[str, dict, list, None], model_cls: Type[T], what: str = "") -> T:
    """
    모델 출력을 지정된 pydantic 타입으로 변환. 실패 시 SchemaParseError.

    Args:
        raw: JSON 문자열 또는 이미 파싱된 dict
        model_cls: 목표 pydantic 모델
        what: 에러 메시지용 라벨 (예: "Story-World")

    Returns:
        검증된 model_cls 인스턴스
    """
    label = what or model_cls.__name__
    if raw is None:
        raise SchemaParseError(f"Empty {label} response from model")

    data = raw
    if isinstance(raw, str):
        try:
            data = parse_llm_json(raw)
        except json.JSONDecodeError as e:
            raise SchemaParseError(f"{label} response is not valid JSON: {e}", raw=raw)

    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        missing = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise SchemaParseError(
            f"{label} response does not match schema (fields: {', '.join(missing)})",
            raw=raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False),
        )
