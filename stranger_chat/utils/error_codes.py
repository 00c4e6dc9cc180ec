class ErrorCodes:
    ERR_MALFORMED_FRAME = 101
    ERR_INVALID_MESSAGE = 202
    ERR_RATE_LIMITED = 301
    ERR_INVALID_STATE = 401
    ERR_ROOM_CONFLICT = 402


class RelayError(Exception):
    def __init__(self, code, message):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")
