from http import HTTPStatus


class ChatError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgument(ChatError):
    status_code = 400


class ConversationBusy(ChatError):
    status_code = 409


class UpstreamFailure(ChatError):
    status_code = 502


class StoreFailure(ChatError):
    status_code = 503


def public_message(exc: ChatError) -> str:
    if exc.status_code < 500:
        return exc.message
    return HTTPStatus(exc.status_code).phrase
