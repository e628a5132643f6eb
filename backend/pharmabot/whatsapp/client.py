"""
WhatsApp Cloud API client (outbound messages, inbound media).

Sending never raises: a failed send is logged and reported as False, so a
dead outbound channel can't stop the turn from persisting its session.
"""
import logging

from pharmabot.core.config import Settings
from pharmabot.core.exceptions import DecodeError, RemoteServiceError, describe_for_log
from pharmabot.schemas.media import MediaDownload
from pharmabot.schemas.messages import OutboundMessage
from pharmabot.services.api_client import ApiClient

logger = logging.getLogger(__name__)


class WhatsAppClient:
    def __init__(self, api: ApiClient, settings: Settings):
        self.api = api
        self.messages_url = settings.whatsapp_messages_url
        self.graph_url = settings.whatsapp_media_url
        self._auth = {"Authorization": f"Bearer {settings.WHATSAPP_TOKEN}"}

    async def send(self, to: str, message: OutboundMessage) -> bool:
        try:
            await self.api.request(self.messages_url, "POST", body=message.to_payload(to), headers=self._auth)
        except RemoteServiceError as e:
            logger.error(f"[WhatsApp] Send to {to} failed ({type(message).__name__}): {describe_for_log(e)}")
            return False
        return True

    async def download_media(self, media_id: str) -> MediaDownload:
        """Resolve the media id to its short-lived URL, then fetch the bytes."""
        meta = await self.api.request(f"{self.graph_url}/{media_id}", headers=self._auth)
        if not isinstance(meta, dict) or not meta.get("url"):
            raise DecodeError(f"Media {media_id} metadata has no url")

        media = await self.api.download(meta["url"], headers=self._auth)
        if not media.content_type and meta.get("mime_type"):
            media = media.model_copy(update={"content_type": meta["mime_type"]})
        logger.info(f"[WhatsApp] Downloaded media {media_id}: {media.size} bytes, {media.content_type}")
        return media
