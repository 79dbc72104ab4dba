import hmac
import logging
import re
from typing import Any, Dict, Iterator, Optional

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from semantic_search_gateway.config import Settings
from semantic_search_gateway.core.embedding import EmbeddingClient
from semantic_search_gateway.db.supabase_ops import StoreClient
from semantic_search_gateway.errors import ErrorKind, GatewayError
from semantic_search_gateway.models.api import WebhookEvent

logger = logging.getLogger(__name__)

INDEX_EVENTS = {"create", "update", "publish"}
REMOVE_EVENTS = {"unpublish", "delete"}

# CMS bookkeeping fields that carry no searchable content
SYSTEM_FIELDS = {
    "uid",
    "url",
    "locale",
    "tags",
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
    "publish_details",
    "ACL",
    "_version",
    "_in_progress",
    "_metadata",
}

_TAG_RE = re.compile(r"<[^>]+>")


def _iter_text(value: Any) -> Iterator[str]:
    """Yield every string nested in ``value`` with markup removed."""
    if isinstance(value, str):
        text = " ".join(_TAG_RE.sub(" ", value).split())
        if text:
            yield text
    elif isinstance(value, dict):
        for key, nested in value.items():
            if key not in SYSTEM_FIELDS and not key.startswith("_"):
                yield from _iter_text(nested)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_text(item)


def entry_to_document(event: WebhookEvent) -> Dict[str, Any]:
    """Flatten a CMS entry into the document shape stored alongside its embedding."""
    fields = event.data.entry
    content_type = event.data.content_type.uid if event.data.content_type else None
    title = fields.get("title")
    if isinstance(title, (dict, list)):
        # Localized or structured titles
        title = " ".join(_iter_text(title)) or None
    elif title is not None:
        title = str(title)

    body = list(_iter_text({key: value for key, value in fields.items() if key != "title"}))
    tags = fields.get("tags") if isinstance(fields.get("tags"), list) else []
    return {
        "uid": fields["uid"],
        "content_type": content_type,
        "locale": fields.get("locale") or event.data.locale,
        "title": title,
        "url": fields.get("url"),
        "content": "\n".join(body),
        "metadata": {"tags": tags, "version": fields.get("_version")},
    }


def _embedding_text(document: Dict[str, Any]) -> str:
    return "\n\n".join(part for part in (document["title"], document["content"]) if part)


def create_router(
    settings: Settings, embedder: EmbeddingClient, store: StoreClient
) -> APIRouter:
    router = APIRouter(tags=["webhooks"])

    def _verify_secret(provided: Optional[str]) -> None:
        if not settings.webhook_secret:
            return
        if provided is None or not hmac.compare_digest(
            provided.encode("utf-8"), settings.webhook_secret.encode("utf-8")
        ):
            raise GatewayError("Invalid webhook secret", ErrorKind.UNAUTHORIZED)

    @router.post("/contentstack")
    async def contentstack(
        event: WebhookEvent,
        x_webhook_secret: Optional[str] = Header(None),
    ) -> JSONResponse:
        """Keep the index in sync with entry publish/unpublish/delete events."""
        _verify_secret(x_webhook_secret)

        uid = event.data.entry["uid"]
        if event.module != "entry":
            return JSONResponse(
                status_code=202, content={"status": "ignored", "reason": "not an entry"}
            )

        if event.event in REMOVE_EVENTS:
            removed = await store.delete_document(uid)
            logger.info(f"Webhook {event.event} for {uid}: removed={removed}")
            return JSONResponse(content={"status": "removed", "uid": uid, "removed": removed})

        if event.event not in INDEX_EVENTS:
            return JSONResponse(
                status_code=202,
                content={"status": "ignored", "reason": f"unsupported event {event.event}"},
            )

        document = entry_to_document(event)
        text = _embedding_text(document)
        if not text:
            raise GatewayError(f"Entry {uid} has no indexable text", ErrorKind.BAD_REQUEST)

        embedding = await embedder.generate_embedding(text)
        await store.upsert_document(document, embedding)
        logger.info(f"Webhook {event.event} for {uid}: indexed {len(text)} characters")
        return JSONResponse(content={"status": "indexed", "uid": uid})

    return router
