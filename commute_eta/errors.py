# commute_eta/errors.py
"""
애플리케이션 공통 에러

여기 정의된 에러만 호출자에게 전파된다.
외부 API 실패는 각 클라이언트에서 빈 결과로 흡수한다.
"""


class AppError(Exception):
    """code / message / status_code 를 가진 기본 에러"""

    def __init__(self, code: str, message: str, status_code: int = 500):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class ConfigurationError(AppError):
    def __init__(self, message: str = "서버 설정이 올바르지 않습니다."):
        super().__init__("CONFIGURATION_ERROR", message, 500)


class BadRequestError(AppError):
    def __init__(self, message: str = "잘못된 요청입니다."):
        super().__init__("BAD_REQUEST", message, 400)


class ForbiddenError(AppError):
    def __init__(self, message: str = "해당 리소스에 대한 권한이 없습니다."):
        super().__init__("FORBIDDEN", message, 403)


class NotFoundError(AppError):
    def __init__(self, message: str = "요청한 리소스를 찾을 수 없습니다."):
        super().__init__("NOT_FOUND", message, 404)
