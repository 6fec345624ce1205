from twilio.base.exceptions import TwilioException
from twilio.rest import Client
import logging
from app.core.config import settings

logger = logging.getLogger(__name__)


def _whatsapp(number: str) -> str:
    # Twilio requires the "whatsapp:" prefix
    return number if number.startswith("whatsapp:") else f"whatsapp:{number}"


class NotificationService:
    """Sends WhatsApp alerts to the operator when the terminal loses the remote store."""

    def __init__(self, client=None):
        self.client = client
        self.enabled = client is not None

        # Only initialize if credentials exist in .env
        if self.client is None and settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN:
            try:
                self.client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN)
                self.enabled = True
                logger.info("✅ NotificationService: Twilio Client Initialized")
            except TwilioException as e:
                logger.error(f"❌ Failed to initialize Twilio Client: {e}")
        elif self.client is None:
            logger.info("⚠️ NotificationService: Twilio credentials missing. Operator alerts disabled.")

    def notify_operator_degraded(self, pending_count: int) -> bool:
        """Tell the operator the terminal is running from its local cache."""
        if not self.enabled or not settings.OPERATOR_PHONE_NUMBER or not settings.TWILIO_FROM_NUMBER:
            logger.debug("Operator alert skipped: notifications disabled or numbers missing.")
            return False

        message_body = (
            f"⚠️ *{settings.PROJECT_NAME}: SEM CONEXÃO*\n\n"
            f"O caixa está operando com o cache local.\n"
            f"📦 Pedidos aguardando sincronização: {pending_count}\n\n"
            f"💡 *Ação:* Verifique a internet/banco de dados."
        )

        try:
            self.client.messages.create(
                from_=_whatsapp(settings.TWILIO_FROM_NUMBER),
                body=message_body,
                to=_whatsapp(settings.OPERATOR_PHONE_NUMBER),
            )
        except TwilioException as e:
            logger.error(f"❌ Operator alert failed: {e}")
            return False
        logger.info(f"✅ Operator alert sent ({pending_count} orders waiting)")
        return True
