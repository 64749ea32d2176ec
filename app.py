import base64
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from metastamp.assembler import form_defaults
from metastamp.codec import ExifCodec
from metastamp.config import Settings, get_config
from metastamp.errors import NoImagesError
from metastamp.logging import setup_logging
from metastamp.models import MetadataRecord
from metastamp.pipeline import BatchContext, ImagePipeline, process_batch

logger = logging.getLogger(__name__)

# Configure paths
BASE_DIR = Path(__file__).parent
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_config()
    setup_logging(settings.log_level)

    app = FastAPI(title="Image Metadata Tool")
    app.state.settings = settings
    app.state.pipeline = ImagePipeline(
        codec=ExifCodec(),
        jpeg_quality=settings.jpeg_quality,
        embed_xmp=settings.embed_xmp,
    )

    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request):
        """Render the upload / metadata form page."""
        return templates.TemplateResponse(request, "index.html", {"defaults": form_defaults("image.jpg")})

    @app.get("/defaults")
    async def defaults(filename: str = "image.jpg"):
        """Initial form values for the first picked image."""
        return JSONResponse(form_defaults(filename, datetime.now()))

    @app.post("/apply-metadata")
    async def apply_metadata(
        request: Request,
        files: List[UploadFile] = File(default=[]),
        file_name_base: str = Form(""),
        title: str = Form(""),
        subject: str = Form(""),
        author: str = Form(""),
        date_taken: str = Form(""),
        copyright_notice: str = Form(""),
        alt_text: str = Form(""),
        keywords: str = Form(""),
        comments: str = Form(""),
        rating: str = Form(""),
        latitude: str = Form(""),
        longitude: str = Form(""),
    ):
        """Embed the submitted metadata into every uploaded image and return them as base64."""
        uploads = []
        for upload in files:
            uploads.append((upload.filename or "image.jpg", upload.content_type or "", await upload.read()))

        try:
            batch = BatchContext.from_uploads(uploads)
        except NoImagesError as e:
            raise HTTPException(status_code=400, detail=str(e))

        record = MetadataRecord(
            file_name_base=file_name_base,
            title=title,
            subject=subject,
            author=author,
            date_taken=date_taken or None,
            copyright_notice=copyright_notice,
            alt_text=alt_text,
            keywords=keywords,
            comments=comments,
            rating=rating,
            latitude=latitude,
            longitude=longitude,
        )

        current = request.app.state.settings
        result = await process_batch(
            batch,
            record,
            request.app.state.pipeline,
            item_timeout=current.item_timeout_seconds,
        )

        return JSONResponse({
            "success": result.failed == 0,
            "total": result.total,
            "completed": result.completed,
            "succeeded": result.succeeded,
            "failed": result.failed,
            "images": [
                {
                    "index": outcome.index,
                    "original_name": outcome.original_name,
                    "filename": outcome.download_name,
                    "status": outcome.status.value,
                    "image_data": base64.b64encode(outcome.data).decode('utf-8') if outcome.data else None,
                    "error": outcome.error,
                    "fields": {name: status.value for name, status in outcome.fields.items()},
                }
                for outcome in result.outcomes
            ],
        })

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    config = get_config()
    uvicorn.run(app, host=config.host, port=config.port)
