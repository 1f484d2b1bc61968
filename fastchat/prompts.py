SYSTEM_PROMPT = (
    "You are a helpful, concise chatbot.\n"
    "Answer clearly and directly. If you don't know, say so."
)
