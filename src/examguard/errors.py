from __future__ import annotations


class ExamGuardError(Exception):
    """Base class for errors raised by the monitor."""


class CameraUnavailableError(ExamGuardError, RuntimeError):
    pass


class ModelInferenceError(ExamGuardError, RuntimeError):
    pass


class NotReadyError(ExamGuardError):
    pass


class InvalidTransitionError(ExamGuardError):
    pass


class MalformedDatasetError(ExamGuardError, ValueError):
    pass


class EmptyDatasetError(ExamGuardError, ValueError):
    pass
