"""内置的默认知识图谱。"""

from typing import Any, Dict, List

DEFAULT_KNOWLEDGE_BASE_DATA: List[Dict[str, Any]] = [
    {
        "id": "welcome",
        "keywords": ["hello", "hi", "hey"],
        "reply": 'Welcome! How can I assist you <b>today?</b> <a href="https://senangwebs.com">senangwebs.com</a>',
        "options": [
            {"label": "Get Help", "target_id": "help"},
            {"label": "End Chat", "target_id": "goodbye"},
        ],
    },
    {
        "id": "help",
        "keywords": ["help", "support", "assist"],
        "reply": "Sure, I can help! What do you need assistance with?",
        "options": [
            {"label": "Product Information", "target_id": "product"},
            {"label": "Billing", "target_id": "billing"},
            {"label": "Technical Support", "target_id": "tech_support"},
        ],
    },
    {
        "id": "product",
        "keywords": ["product", "information"],
        "reply": (
            "Our product is designed to make your life easier. "
            "Would you like to know more about its features or pricing?"
        ),
        "options": [
            {"label": "Features", "target_id": "features"},
            {"label": "Pricing", "target_id": "pricing"},
        ],
    },
    {
        "id": "billing",
        "keywords": ["billing", "payment", "invoice"],
        "reply": (
            "For billing inquiries, please visit our billing portal or contact "
            "our finance department at billing@example.com."
        ),
        "options": [
            {"label": "Back to Help", "target_id": "help"},
            {"label": "End Chat", "target_id": "goodbye"},
        ],
    },
    {
        "id": "tech_support",
        "keywords": ["technical", "support", "issue"],
        "reply": "For technical support, please describe your issue in detail and we'll do our best to assist you.",
    },
    {
        "id": "features",
        "keywords": ["features", "functionality"],
        "reply": (
            "Our product offers cutting-edge features including AI-powered analytics, "
            "real-time collaboration, and seamless integration with popular tools."
        ),
        "options": [
            {"label": "Back to Product Info", "target_id": "product"},
            {"label": "End Chat", "target_id": "goodbye"},
        ],
    },
    {
        "id": "pricing",
        "keywords": ["pricing", "cost", "plans"],
        "reply": (
            "We offer flexible pricing plans starting at $9.99/month. For detailed pricing "
            "information, please visit our website or contact our sales team."
        ),
        "options": [
            {"label": "Back to Product Info", "target_id": "product"},
            {"label": "End Chat", "target_id": "goodbye"},
        ],
    },
    {
        "id": "goodbye",
        "keywords": ["bye", "goodbye", "end"],
        "reply": "Thank you for chatting with us. Have a great day!",
        "options": [{"label": "Restart Chat", "target_id": "welcome"}],
    },
]
