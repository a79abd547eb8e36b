"""
Preview API routes.
"""
import logging
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ogimg.domain.models import RenderSpec
from ogimg.errors import ConfigError, FetchError, LocatorError, PreviewError
from ogimg.services.cancel import CancelToken
from ogimg.services.composer import Composer
from ogimg.services.font_cache import FontCache
from ogimg.services.image_transform import encode_jpeg
from ogimg.services.resource_fetcher import RemoteFetcher
from ogimg.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter()

# Defaults applied to every /preview request
DEFAULTS = RenderSpec(title="", logo="")


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(message=message).model_dump())


@lru_cache(maxsize=1)
def get_composer() -> Composer:
    """Composer shared by all requests; the font cache lives as long as the process."""
    return Composer(fetcher=RemoteFetcher(), fonts=FontCache())


@router.get("/preview")
def get_preview(
    title: str = "",
    author: str = "",
    ava: str = "",
    logo: str = "",
    bg: str = "",
    label: str = "",
    op: Optional[str] = None,
    composer: Composer = Depends(get_composer),
):
    """Render a preview card and return it as a JPEG."""
    if not title:
        return error_response(400, "Missing required title parameter")
    if not logo:
        return error_response(400, "Missing required logo parameter")

    opacity = DEFAULTS.opacity
    if op:
        try:
            opacity = float(op)
        except ValueError:
            return error_response(400, "Could not parse op parameter")

    spec = RenderSpec(
        title=title,
        author=author,
        avatar=ava,
        logo=logo,
        background=bg,
        label=label,
        opacity=opacity,
    )
    cancel = CancelToken.with_timeout(settings.RENDER_TIMEOUT)
    try:
        body = encode_jpeg(composer.render(spec, cancel), spec.quality)
    except (ConfigError, LocatorError) as exc:
        return error_response(400, str(exc))
    except FetchError as exc:
        logger.warning("preview fetch failed: %s", exc)
        return error_response(502, str(exc))
    except PreviewError as exc:
        logger.exception("preview render failed")
        return error_response(500, str(exc))

    return Response(content=body, media_type="image/jpeg", headers={"Content-Length": str(len(body))})
