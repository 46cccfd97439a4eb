from __future__ import annotations


class CodeboxError(Exception):
    """Base cho mọi lỗi của engine."""


class ValidationError(CodeboxError):
    """Input sai / thiếu. Luôn trả 400, không chạm tài nguyên nào."""


class NotSupportedError(ValidationError):
    def __init__(self, language: str, mode: str):
        self.language = language
        self.mode = mode
        if mode == "test":
            msg = f"Test framework for {language} not supported yet"
        else:
            msg = f"Language {language} not supported yet"
        super().__init__(msg)


class MissingTestMarkersError(ValidationError):
    def __init__(self, language: str, markers):
        self.language = language
        self.markers = tuple(markers)
        names = ", ".join(f"'{m}'" for m in self.markers)
        super().__init__(
            f"Error: {language} test code must include test syntax (e.g., {names})"
        )


class WorkspaceError(CodeboxError):
    pass


class ProvisionError(CodeboxError):
    pass


class StartError(CodeboxError):
    pass


class StreamError(CodeboxError):
    """Lỗi transport giữa chừng; giữ lại output đã đọc được."""

    def __init__(self, message: str, partial: bytes = b""):
        super().__init__(message)
        self.partial = partial


class MalformedFrameError(StreamError):
    pass


class ExecTimeout(CodeboxError):
    def __init__(self, timeout_s: float, partial: bytes = b""):
        super().__init__(f"Execution timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s
        self.partial = partial


