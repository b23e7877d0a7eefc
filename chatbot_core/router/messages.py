"""面向用户的固定回复文案。"""

from chatbot_core.domain.exceptions import BusinessError, ErrorKind

FALLBACK_REPLY = "I'm sorry, I didn't understand that. Can you please rephrase?"
OPTION_NOT_FOUND_REPLY = "I'm sorry, I couldn't find the appropriate response. How else can I assist you?"
AI_NOT_CONFIGURED_REPLY = "AI features are not configured properly."
PLEASE_WAIT_REPLY = "Please wait for the current response to complete."
CANCELLED_REPLY = "Response cancelled."

_ERROR_REPLIES = {
    ErrorKind.AUTH: "⚠️ API authentication failed. Please check your API key configuration.",
    ErrorKind.RATE_LIMIT: "⚠️ Too many requests. Please wait a moment and try again.",
    ErrorKind.CANCELLED: CANCELLED_REPLY,
    ErrorKind.SERVER: "⚠️ The AI service is temporarily unavailable. Please try again later.",
}


def user_facing_error(error: BaseException) -> str:
    """按 ErrorKind 把异常映射为提示文案，未知错误带上原始信息。"""

    if isinstance(error, BusinessError) and error.kind in _ERROR_REPLIES:
        return _ERROR_REPLIES[error.kind]
    text = error.message if isinstance(error, BusinessError) else str(error)
    return f"⚠️ An error occurred: {text}"
