"""
FastAPI Backend for the Card-Calibrated PD Estimator.
Provides endpoints for marker annotation sessions, auto-suggest and saved readings.
"""

from typing import Literal, Optional

import cv2
import numpy as np
from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict

from pd_estimator.errors import InvalidMeasurementError, SessionNotFoundError
from pd_estimator.export import export_filename
from pd_estimator.markers import MarkerSet
from pd_estimator.measurement import calculate_pd
from pd_estimator.session import CapturedPhoto
from pd_estimator.utils import Point
from pd_service import PDService, get_pd_service

# Create FastAPI app
app = FastAPI(
    title="PD Estimator API",
    description="API for estimating Pupillary Distance from a photo with a reference card",
    version="1.0.0"
)

# Add CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class Base64ImageRequest(BaseModel):
    """Request with base64 encoded image."""
    image: str
    auto_detect: bool = True


class PointModel(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)
    
    x: float
    y: float


class MarkersModel(BaseModel):
    """Four markers in image pixels."""
    leftPupil: PointModel
    rightPupil: PointModel
    leftCard: PointModel
    rightCard: PointModel
    
    def to_marker_set(self) -> MarkerSet:
        return MarkerSet.from_dict(self.model_dump())


class PointerEventRequest(BaseModel):
    """Pointer event in display pixels."""
    model_config = ConfigDict(allow_inf_nan=False)
    
    event: Literal["down", "move", "up", "cancel"]
    x: Optional[float] = None
    y: Optional[float] = None
    display_width: Optional[float] = None
    display_height: Optional[float] = None


def _not_found(e: SessionNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "PD Estimator API"}


@app.post("/api/measure")
async def measure(markers: MarkersModel):
    """Measure PD from four markers (no session)."""
    try:
        result = calculate_pd(markers.to_marker_set())
        return JSONResponse(content=result.to_dict())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/sessions")
async def create_session(request: Base64ImageRequest, service: PDService = Depends(get_pd_service)):
    """Start an annotation session from a captured base64 image."""
    try:
        photo = CapturedPhoto.from_data_url(request.image)
        session = await service.create_session(photo, auto_detect=request.auto_detect)
        return JSONResponse(content=session.to_dict())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Session creation failed: {str(e)}")


@app.post("/api/sessions/file")
async def create_session_file(file: UploadFile = File(...), service: PDService = Depends(get_pd_service)):
    """Start an annotation session from an uploaded file."""
    contents = await file.read()
    nparr = np.frombuffer(contents, np.uint8)
    image = cv2.imdecode(nparr, cv2.IMREAD_COLOR) if nparr.size else None
    
    if image is None:
        raise HTTPException(status_code=400, detail="Invalid image file")
    
    try:
        session = await service.create_session(CapturedPhoto.from_image(image))
        return JSONResponse(content=session.to_dict())
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Session creation failed: {str(e)}")


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str, service: PDService = Depends(get_pd_service)):
    try:
        return JSONResponse(content=service.get_session(session_id).to_dict())
    except SessionNotFoundError as e:
        raise _not_found(e)


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, service: PDService = Depends(get_pd_service)):
    try:
        service.close_session(session_id)
        return {"deleted": session_id}
    except SessionNotFoundError as e:
        raise _not_found(e)


@app.put("/api/sessions/{session_id}/markers")
async def put_markers(session_id: str, markers: MarkersModel, service: PDService = Depends(get_pd_service)):
    """Replace all four markers."""
    try:
        session = service.set_markers(session_id, markers.to_marker_set())
        return JSONResponse(content=session.to_dict())
    except SessionNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/sessions/{session_id}/pointer")
async def pointer_event(session_id: str, request: PointerEventRequest, service: PDService = Depends(get_pd_service)):
    """Feed a pointer event to the marker drag state machine."""
    try:
        point = Point(request.x, request.y) if request.x is not None and request.y is not None else None
        session = service.pointer_event(
            session_id,
            request.event,
            point,
            display_width=request.display_width,
            display_height=request.display_height
        )
        return JSONResponse(content=session.to_dict())
    except SessionNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/sessions/{session_id}/auto-suggest")
async def rerun_auto_suggest(session_id: str, service: PDService = Depends(get_pd_service)):
    """Re-run auto-detection from any state."""
    try:
        session = await service.rerun_auto_detect(session_id)
        return JSONResponse(content=session.to_dict())
    except SessionNotFoundError as e:
        raise _not_found(e)


@app.post("/api/sessions/{session_id}/retake")
async def retake(session_id: str, request: Base64ImageRequest, service: PDService = Depends(get_pd_service)):
    try:
        photo = CapturedPhoto.from_data_url(request.image)
        session = await service.retake(session_id, photo, auto_detect=request.auto_detect)
        return JSONResponse(content=session.to_dict())
    except SessionNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/sessions/{session_id}/save")
async def save_reading(session_id: str, service: PDService = Depends(get_pd_service)):
    """Save the current measurement. Rejected while it has validation issues."""
    try:
        reading = service.save_reading(session_id)
        return JSONResponse(content={"reading": reading.to_dict(), "shareText": reading.share_text()})
    except SessionNotFoundError as e:
        raise _not_found(e)
    except InvalidMeasurementError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "issues": e.issues})


@app.get("/api/sessions/{session_id}/preview.png")
async def preview_png(session_id: str, service: PDService = Depends(get_pd_service)):
    try:
        return Response(content=service.preview_png(session_id), media_type="image/png")
    except SessionNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Preview failed: {str(e)}")


@app.get("/api/sessions/{session_id}/export.png")
async def export_png(session_id: str, service: PDService = Depends(get_pd_service)):
    """Download the annotated photo with the measurement summary."""
    try:
        content = service.export_png(session_id)
    except SessionNotFoundError as e:
        raise _not_found(e)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Could not export PNG: {str(e)}")
    
    return Response(
        content=content,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'}
    )


@app.get("/api/readings")
async def list_readings(service: PDService = Depends(get_pd_service)):
    return {"readings": [r.to_dict() for r in service.list_readings()]}


@app.delete("/api/readings")
async def clear_readings(service: PDService = Depends(get_pd_service)):
    service.clear_readings()
    return {"readings": []}


if __name__ == "__main__":
    import uvicorn
    print("\n" + "="*60)
    print("  PD Estimator API Server")
    print("="*60)
    print("\n  Starting server on http://0.0.0.0:8000")
    print("  API docs: http://localhost:8000/docs")
    print("\n" + "="*60 + "\n")
    
    uvicorn.run(app, host="0.0.0.0", port=8000)
