from chatbot_core.context.window import ContextWindow, estimate_tokens

__all__ = ["ContextWindow", "estimate_tokens"]
