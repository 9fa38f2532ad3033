"""Script directory and script checking endpoints."""
import structlog
from fastapi import APIRouter, Depends, HTTPException

from mockserver.api.deps import get_script_store
from mockserver.engine import script_parser
from mockserver.engine.script_parser import ScriptError
from mockserver.exceptions import ScriptNotFoundError, ScriptParseError
from mockserver.models import (
    ParsedMessageInfo,
    ParseIssue,
    ScriptParseRequest,
    ScriptParseResponse,
    ScriptUpload,
)

logger = structlog.get_logger()
router = APIRouter(prefix="/api/scripts", tags=["scripts"])


def _describe(text: str) -> ScriptParseResponse:
    response = ScriptParseResponse(valid=True)
    for entry in script_parser.parse(text):
        if isinstance(entry, ScriptError):
            response.valid = False
            response.errors.append(ParseIssue(kind=entry.kind, line=entry.line))
        else:
            response.messages.append(
                ParsedMessageInfo(
                    direction=entry.direction,
                    size=len(entry.payload),
                    payload_hex=entry.payload.hex(),
                )
            )
    return response


@router.get("")
async def list_scripts(store=Depends(get_script_store)):
    names = store.list_scripts()
    return {"scripts": names, "count": len(names)}


@router.post("/parse", response_model=ScriptParseResponse)
async def parse_script(request: ScriptParseRequest):
    """Report every message and every malformed line of a script in one pass."""
    return _describe(request.text)


@router.get("/{name}")
async def get_script(name: str, store=Depends(get_script_store)):
    try:
        text = store.read(name)
    except ScriptNotFoundError:
        raise HTTPException(status_code=404, detail=f"Script not found: {name}")
    except ScriptParseError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    return {"name": name, "text": text, "parsed": _describe(text)}


@router.put("/{name}")
async def save_script(name: str, upload: ScriptUpload, store=Depends(get_script_store)):
    try:
        path = store.save(name, upload.text)
    except ScriptParseError as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "message": exc.message,
                "errors": [{"kind": e.kind.value, "line": e.line} for e in exc.errors],
            },
        )
    except ScriptNotFoundError:
        raise HTTPException(status_code=400, detail=f"Invalid script name: {name}")
    logger.info("script_uploaded_via_api", name=name)
    return {"name": name, "path": str(path)}


@router.delete("/{name}")
async def delete_script(name: str, store=Depends(get_script_store)):
    try:
        store.delete(name)
    except ScriptNotFoundError:
        raise HTTPException(status_code=404, detail=f"Script not found: {name}")
    return {"name": name, "deleted": True}
