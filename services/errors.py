# services/errors.py


class CourseError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Validation (rejected before any write)

class ValidationFailed(CourseError):
    status_code = 400


class DuplicateCourseCode(CourseError):
    status_code = 400


class DuplicateModuleNumber(CourseError):
    status_code = 400


class InvalidContentItem(CourseError):
    status_code = 400


class UploadError(CourseError):
    status_code = 400


# Authorization

class UnauthorizedCourseCode(CourseError):
    status_code = 403


class TeacherMismatch(CourseError):
    status_code = 403


class CourseCodeNotAuthorized(CourseError):
    status_code = 403


class NotCourseOwner(CourseError):
    status_code = 403


# Conflicts

class AlreadyEnrolled(CourseError):
    status_code = 409


class CourseCodeInUse(CourseError):
    status_code = 409


class ConcurrentModification(CourseError):
    status_code = 409


# Not found

class NotFound(CourseError):
    status_code = 404


class CourseNotFound(NotFound):
    pass


class TeacherNotFound(NotFound):
    pass


class StudentNotFound(NotFound):
    pass


class SyllabusNotFound(NotFound):
    pass


class ModuleNotFound(NotFound):
    pass


class ChapterNotFound(NotFound):
    pass


class ContentItemNotFound(NotFound):
    pass


class ArticleNotFound(NotFound):
    pass


# Transactional

class TransactionAborted(CourseError):
    status_code = 500
