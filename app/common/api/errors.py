from fastapi import HTTPException


class HTTP403(HTTPException):
    """403 Forbidden"""

    def __init__(self, detail: str = 'Forbidden'):
        super().__init__(status_code=403, detail=detail)


class HTTP404(HTTPException):
    """404 Not Found"""

    def __init__(self, detail: str = 'Not found'):
        super().__init__(status_code=404, detail=detail)


class HTTP400(HTTPException):
    """400 Bad Request"""

    def __init__(self, detail: str = 'Bad request'):
        super().__init__(status_code=400, detail=detail)


class HTTP401(HTTPException):
    """401 Unauthorized"""

    def __init__(self, detail: str = 'Unauthorized'):
        super().__init__(status_code=401, detail=detail)


class HTTP409(HTTPException):
    """409 Conflict"""

    def __init__(self, detail: str = 'Conflict'):
        super().__init__(status_code=409, detail=detail)


class HTTP412(HTTPException):
    """412 Precondition Failed"""

    def __init__(self, detail: str = 'Precondition failed'):
        super().__init__(status_code=412, detail=detail)


class HTTP503(HTTPException):
    """503 Service Unavailable"""

    def __init__(self, detail: str = 'Service unavailable'):
        super().__init__(status_code=503, detail=detail)
