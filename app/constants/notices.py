class UserNotices:
    """User-facing WhatsApp texts. Short, specific, never technical."""

    RICH_INPUT_RECEIVED = "Recibí tu archivo. Lo estoy procesando y te respondo en breve."
    RICH_INPUT_STILL_WORKING = (
        "Estoy procesando tu archivo, está tardando más de lo normal. "
        "Te respondo apenas termine."
    )
    RICH_INPUT_TIMEOUT = (
        "No pude completar el procesamiento a tiempo. "
        "Intenta con un archivo más corto o envíame texto."
    )
    RICH_INPUT_FAILED = (
        "No pude procesar ese archivo en este momento. "
        "Intenta de nuevo o envíame el contenido en texto."
    )
    RICH_INPUT_MISSING_MEDIA = (
        "No pude acceder a ese archivo. ¿Puedes enviarlo de nuevo?"
    )
    STICKER_STANDBY = (
        "Por ahora no proceso stickers. "
        "Si quieres, envíame texto, audio, imagen o documento."
    )
    UNSUPPORTED = (
        "Ese tipo de mensaje no está soportado por ahora. "
        "Intenta con texto, audio, imagen o documento."
    )
    PERSIST_FAILED = (
        "Disculpa, hubo un problema guardando tu mensaje. "
        "Por favor intenta de nuevo en unos momentos."
    )
    PROCESSING_FAILED = (
        "Disculpa, tuve un problema procesando tu mensaje. ¿Puedes intentar de nuevo?"
    )
    SIGNUP_PROMPT = (
        "¡Hola! Antes de continuar, completa tu registro básico. "
        'Envíame: "Me llamo <tu nombre>, mi email es <tu@email.com>".'
    )
    SIGNUP_PENDING = (
        'Tu registro sigue pendiente. Envíame: "Me llamo <tu nombre>, '
        'mi email es <tu@email.com>".'
    )
    SIGNUP_COMPLETED = "¡Gracias! Tu registro quedó completo."

    @staticmethod
    def signup_completed(name: str) -> str:
        if not name:
            return UserNotices.SIGNUP_COMPLETED
        return f"¡Gracias, {name}! Tu registro quedó completo."

    @staticmethod
    def rate_limited(wait_seconds: int) -> str:
        plural = "s" if wait_seconds > 1 else ""
        return (
            f"⚠️ Estás enviando mensajes muy rápido. Por favor espera "
            f"{wait_seconds} segundo{plural} e intenta de nuevo."
        )
