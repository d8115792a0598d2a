from io import BytesIO
import csv
import logging

import pandas as pd
import pyarrow.parquet as pq
import pyarrow as pa
from fastapi import FastAPI, File, HTTPException, Response, Depends, UploadFile
from fastapi.openapi.docs import get_swagger_ui_html
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.responses import HTMLResponse

import vinscan.models as model
from vinscan.config import settings
from vinscan.db import PrefillRecord, get_db
from vinscan.ocr import (
    extract_vin,
    extract_vin_from_image,
    has_vin_ambiguous_chars,
    normalize_vin,
)
from vinscan.prefill import prefill_make_model_from_vin
from vinscan.vin import decode_vin_info


EXPORT_COLUMNS = ["vin", "make", "model", "manufacturer_group", "created_at"]
app = FastAPI(title="vinscan")
logger = logging.getLogger(__name__)
logger.setLevel(settings.log_level)


def build_extract_response(vin: str | None) -> model.ExtractResponse:
    """
    Wrap an extracted VIN (or its absence) with its offline decoding.

    Args:
        vin (str | None): The VIN found by the extractor, if any.

    Returns:
        model.ExtractResponse: VIN, ambiguous-character flag and decoded info.
    """
    if not vin:
        logger.info("No VIN found in OCR text")
        return model.ExtractResponse()

    return model.ExtractResponse(
        vin=vin,
        has_ambiguous_chars=has_vin_ambiguous_chars(vin),
        decoded=decode_vin_info(vin),
    )


@app.post("/decode", response_model=model.DecodeResponse)
async def decode(vin_request: model.VinRequest):
    """
    Endpoint to decode a VIN offline: segments, manufacturer group, likely make
    and Ford plant hold.
    """
    logger.info("Received VIN decode request")
    decoded = decode_vin_info(vin_request.vin)
    return model.DecodeResponse(
        **decoded.model_dump(),
        has_ambiguous_chars=has_vin_ambiguous_chars(vin_request.vin),
    )


@app.post("/extract", response_model=model.ExtractResponse)
async def extract(extract_request: model.ExtractRequest):
    """
    Endpoint to pick the most likely VIN out of OCR text blocks.
    """
    logger.info(
        f"Received VIN extraction request with {len(extract_request.text_blocks)} block(s)"
    )
    return build_extract_response(extract_vin(extract_request.text_blocks))


@app.post("/extract/image", response_model=model.ExtractResponse)
async def extract_from_image(image: UploadFile = File(...)):
    """
    Endpoint to run OCR on an uploaded photo of a VIN label and extract the VIN.

    Args:
        image (UploadFile): The photo to read.

    Returns:
        model.ExtractResponse: The VIN found, or an empty response when OCR found none.
    """
    logger.info("Received VIN image extraction request")
    content = await image.read()
    if not content:
        logger.warning("Empty image upload")
        raise HTTPException(status_code=400, detail="Uploaded image is empty")

    vin = await extract_vin_from_image(content)
    return build_extract_response(vin)


@app.post("/prefill", response_model=model.PrefillResponse)
async def prefill(vin_request: model.VinRequest, db: Session = Depends(get_db)):
    """
    Endpoint to prefill make and model for a VIN.

    Remote answers for full VINs are cached; the local WMI guess never is.

    Args:
        vin_request (model.VinRequest): The VIN to prefill.
        db (Session): The database session, injected via dependency injection.

    Returns:
        model.PrefillResponse: The make/model and where it came from.
    """
    logger.info("Received make/model prefill request")
    vin = normalize_vin(vin_request.vin)

    cached = db.query(PrefillRecord).filter(PrefillRecord.vin == vin).first()
    if cached:
        logger.info("VIN found in prefill cache")
        return model.PrefillResponse(
            vin_requested=vin_request.vin,
            make=cached.make,
            model=cached.model,
            source="remote",
            cached_result=True,
        )

    result = await prefill_make_model_from_vin(vin)
    if result.source == "remote":
        logger.info("Adding prefill to the cache")
        # another request may have cached this VIN while the lookup was in flight
        db.merge(
            PrefillRecord(
                vin=vin,
                make=result.make,
                model=result.model,
                manufacturer_group=decode_vin_info(vin).manufacturer_group.value,
            )
        )
        try:
            db.commit()
        except IntegrityError:
            logger.warning(f"VIN {vin} was cached by a concurrent request")
            db.rollback()

    return model.PrefillResponse(
        vin_requested=vin_request.vin,
        make=result.make,
        model=result.model,
        source=result.source,
        cached_result=False,
    )


@app.delete("/remove", response_model=model.VinDeleteResponse)
async def remove_from_cache(
    vin_request: model.VinDeleteRequest, db: Session = Depends(get_db)
):
    """
    Endpoint to remove a cached prefill if present.

    Args:
        vin_request (model.VinDeleteRequest): The request payload of the VIN to delete.
        db (Session): SQLAlchemy Session object for database transaction.

    Returns:
        model.VinDeleteResponse: The VIN requested for deletion and the success status.
    """
    logger.info("Received prefill cache deletion request")

    cached = db.query(PrefillRecord).filter(PrefillRecord.vin == vin_request.vin).first()
    if not cached:
        logger.warning("VIN not found in the prefill cache")
        return model.VinDeleteResponse(
            vin_requested=vin_request.vin, delete_success=False
        )

    db.delete(cached)
    db.commit()

    logger.info("Prefill removed from the cache")
    return model.VinDeleteResponse(vin_requested=vin_request.vin, delete_success=True)


@app.get("/export")
async def export_cache(
    file_format: str = "parquet", db: Session = Depends(get_db)
) -> Response:
    """
    Endpoint to export the prefill cache as a parquet or CSV file.

    Args:
        file_format (str): "parquet" (default) or "csv".
        db (Session): SQLAlchemy Session object for database transactions.

    Returns:
        Response: The file as a download.
    """
    if file_format not in ("parquet", "csv"):
        raise HTTPException(
            status_code=400, detail=f"Unsupported export format: {file_format}"
        )
    logger.info(f"Exporting prefill cache as {file_format}")

    records = db.query(PrefillRecord).all()
    df = pd.DataFrame(
        [
            {
                "vin": record.vin,
                "make": record.make,
                "model": record.model,
                "manufacturer_group": record.manufacturer_group,
                "created_at": record.created_at,
            }
            for record in records
        ],
        columns=EXPORT_COLUMNS,
    )

    if file_format == "csv":
        # quote every field so VINs with leading zeros survive spreadsheets
        content = df.to_csv(index=False, quoting=csv.QUOTE_ALL).encode("utf-8")
        media_type = "text/csv"
    else:
        buffer = BytesIO()
        pq.write_table(pa.Table.from_pandas(df), buffer)
        content = buffer.getvalue()
        # per https://www.rfc-editor.org/rfc/rfc2046.txt
        media_type = "application/octet-stream"

    response = Response(content=content)
    response.headers["Content-Type"] = media_type
    response.headers["Content-Disposition"] = (
        f"attachment; filename=vin_prefill_cache.{file_format}"
    )
    logger.info("Export completed successfully")

    return response


@app.get("/", response_class=HTMLResponse)
async def root():
    """
    Default endpoint that redirects the user to the Swagger UI.
    """
    return get_swagger_ui_html(openapi_url="/openapi.json", title="API Docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
