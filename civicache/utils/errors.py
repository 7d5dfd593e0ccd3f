import requests


def get_error_message(exc: BaseException) -> str:
    """
    Return a short, human-readable description of an exception suitable for
    storing on a Run or returning from an ingestion call.

    HTTP errors are reported with their status code and the requested URL
    rather than the full response text, since upstream error pages can be
    very large.
    """
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        response = exc.response
        return f"HTTP {response.status_code} for {response.url}"

    message = str(exc).strip()
    if not message:
        return exc.__class__.__name__
    return message
