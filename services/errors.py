class PipelineError(Exception):
    """Base class for errors raised by the pipeline services."""
    status_code = 400

    def __init__(self, message=None):
        self.message = message or self.default_message()
        super().__init__(self.message)

    def default_message(self):
        return self.__class__.__doc__ or "Pipeline error"


class NotFoundOrInactive(PipelineError):
    """Pipeline not found or inactive"""
    status_code = 404


class NotFound(PipelineError):
    """Not found"""
    status_code = 404


class ValidationError(PipelineError):
    """Validation error"""
    status_code = 400


class EmailDeliveryError(PipelineError):
    """Email could not be delivered"""
    status_code = 502
