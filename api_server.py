"""
StoryFrame FastAPI Server

웹 UI와 storyboard 파이프라인을 연결하는 API 서버
WebSocket으로 실시간 진행상황 전달
"""

import asyncio
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

# .env 파일 로드 (프로세스 진입점에서만)
load_dotenv()

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pipeline import StoryboardPipeline
from schemas import ContinuationRequest, GenerationProgress, GenerationRequest
from utils.error_manager import ErrorManager
from utils.errors import GenerationError, describe_error
from utils.logger import get_logger

logger = get_logger("api")

# FastAPI 앱 생성
app = FastAPI(title="StoryFrame API", version="1.0")

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 활성 WebSocket 연결 관리
active_connections: Dict[str, WebSocket] = {}
# run별 메시지 히스토리 (재접속/새로고침 시 상태 복구용)
run_event_history: Dict[str, List[Dict[str, Any]]] = {}
# 진행 중인 run의 취소 이벤트
active_runs: Dict[str, asyncio.Event] = {}

MAX_HISTORY_EVENTS = 500
MAX_HISTORY_RUNS = 50

# 에러 category → HTTP status
STATUS_BY_CATEGORY = {
    "configuration": 500,
    "malformed_output": 502,
    "generation": 500,
    "cancelled": 499,
}

_pipeline: Optional[StoryboardPipeline] = None


def get_pipeline() -> StoryboardPipeline:
    """파이프라인 lazy 생성 (첫 요청 시 API key 확인)"""
    global _pipeline
    if _pipeline is None:
        _pipeline = StoryboardPipeline()
    return _pipeline


# ============================================================================
# WebSocket 진행상황 전달
# ============================================================================

async def send_progress(run_id: str, event: GenerationProgress):
    """
    WebSocket으로 진행상황 전송

    Args:
        run_id: 생성 run ID
        event: 파이프라인 진행률 이벤트
    """
    await _broadcast(run_id, {"type": "progress", **event.to_json_dict()})


async def send_terminal(run_id: str, event_type: str, data: Dict[str, Any]):
    """완료/실패 이벤트 전송"""
    await _broadcast(run_id, {"type": event_type, **data})


async def _broadcast(run_id: str, payload: Dict[str, Any]):
    payload["timestamp"] = datetime.now().isoformat()

    # 히스토리 저장
    if run_id not in run_event_history:
        run_event_history[run_id] = []
        _evict_old_runs()
    history = run_event_history[run_id]
    history.append(payload)
    del history[:-MAX_HISTORY_EVENTS]

    ws = active_connections.get(run_id)
    if ws is not None:
        try:
            await ws.send_json(payload)
        except Exception as e:
            logger.warning(f"[WS] send failed for {run_id}: {e}")
            active_connections.pop(run_id, None)


def _evict_old_runs():
    """오래된 run 히스토리 제거 (최근 MAX_HISTORY_RUNS개만 유지, 진행 중인 run은 유지)"""
    excess = len(run_event_history) - MAX_HISTORY_RUNS
    if excess <= 0:
        return
    finished = [rid for rid in run_event_history if rid not in active_runs]
    for rid in finished[:excess]:
        del run_event_history[rid]


# ============================================================================
# Error mapping
# ============================================================================

@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    status = STATUS_BY_CATEGORY.get(exc.category, 500)
    return JSONResponse(
        status_code=status,
        content={"error": describe_error(exc), "code": exc.category},
    )


async def _run(run_id: Optional[str], runner):
    run_id = run_id or str(uuid.uuid4())[:8]
    if run_id in active_runs:
        raise HTTPException(status_code=409, detail=f"Run {run_id} is already in progress")

    cancel_event = asyncio.Event()
    active_runs[run_id] = cancel_event

    async def on_progress(event: GenerationProgress):
        await send_progress(run_id, event)

    try:
        result = await runner(on_progress, cancel_event)
    except GenerationError as e:
        await send_terminal(run_id, "error", {"error": describe_error(e), "code": e.category})
        raise
    except Exception as e:
        logger.exception(f"[API] Run {run_id} crashed")
        await send_terminal(run_id, "error", {"error": describe_error(e), "code": "generation"})
        raise GenerationError(f"Unexpected error: {e}") from e
    finally:
        active_runs.pop(run_id, None)

    await send_terminal(run_id, "complete", {})
    return run_id, result


# ============================================================================
# API
# ============================================================================

@app.websocket("/ws/{run_id}")
async def websocket_endpoint(websocket: WebSocket, run_id: str):
    """WebSocket 연결 (실시간 진행상황)"""
    await websocket.accept()
    active_connections[run_id] = websocket

    # 접속 시 지난 히스토리 모두 전송 (상태 복구)
    for event in list(run_event_history.get(run_id, [])):
        try:
            await websocket.send_json(event)
        except Exception as e:
            logger.warning(f"[WS] replay failed for {run_id}: {e}")
            break

    try:
        while True:
            # 클라이언트로부터 메시지 수신 (연결 유지용)
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        # 연결이 끊겨도 히스토리는 유지 (재접속 가능성)
        active_connections.pop(run_id, None)


@app.post("/api/storyboard/generate")
async def generate_storyboard(
    req: GenerationRequest,
    run_id: Optional[str] = None,
    pipeline: StoryboardPipeline = Depends(get_pipeline),
):
    """신규 storyboard 생성"""
    outcome = await _run(
        run_id,
        lambda on_progress, cancel_event: pipeline.generate(
            req, on_progress=on_progress, cancel_event=cancel_event
        ),
    )
    run_id, storyboard = outcome
    return {"runId": run_id, "storyboard": storyboard.to_json_dict()}


@app.post("/api/storyboard/continue")
async def continue_storyboard(
    req: ContinuationRequest,
    run_id: Optional[str] = None,
    pipeline: StoryboardPipeline = Depends(get_pipeline),
):
    """기존 storyboard에 씬 1개 추가"""
    outcome = await _run(
        run_id,
        lambda on_progress, cancel_event: pipeline.continue_storyboard(
            req, on_progress=on_progress, cancel_event=cancel_event
        ),
    )
    run_id, scene = outcome
    return {"runId": run_id, "scene": scene.to_json_dict()}


@app.post("/api/runs/{run_id}/cancel")
async def cancel_run(run_id: str):
    """진행 중인 run 취소 (다음 LLM 호출 전에 중단)"""
    cancel_event = active_runs.get(run_id)
    if cancel_event is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    cancel_event.set()
    return {"runId": run_id, "status": "cancelling"}


@app.get("/api/errors")
async def recent_errors(limit: int = 20, service: Optional[str] = None):
    """최근 에러/경고 로그 조회"""
    return {"errors": ErrorManager.get_recent_errors(limit=limit, service=service)}


@app.get("/api/health")
async def health_check():
    """헬스 체크"""
    return {
        "status": "ok",
        "version": "1.0",
        "active_connections": len(active_connections),
        "active_runs": len(active_runs),
    }


if __name__ == "__main__":
    import uvicorn

    print("""
============================================================
              StoryFrame API Server v1.0
============================================================
  Server: http://localhost:8000
  API Docs: http://localhost:8000/docs
============================================================
    """)

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=port,
        reload=False,
        log_level="info"
    )
