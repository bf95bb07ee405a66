from __future__ import annotations


class PipelineError(Exception):
	"""Base class for errors raised by the submission pipeline."""


class SubmissionInvalid(PipelineError):
	"""Intake input the caller must correct; nothing was written."""


class SubmissionNotFound(PipelineError):
	"""Unknown submission, or one the requester does not own."""


class RescoreConflict(PipelineError):
	"""A grading attempt is already in flight, or the submission has not been graded yet."""


class GradingOracleError(PipelineError):
	"""The grading service could not be reached or answered with an error."""


class NarrationError(PipelineError):
	pass


class MediaStoreError(PipelineError):
	pass
