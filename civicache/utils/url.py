from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit


def _serialize_value(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_url(base_url, path_segments=(), params=None):
    """
    Build a request URL whose query string is stable for the same logical
    parameters: keys are sorted, `None` values are dropped and booleans are
    written as lowercase `true`/`false`.

    Path segments are percent-quoted individually and joined onto the base URL.
    """

    path = "/".join(quote(str(segment), safe="") for segment in path_segments)
    url = base_url.rstrip("/")
    if path:
        url = f"{url}/{path}"

    query = [
        (key, _serialize_value(value))
        for key, value in sorted((params or {}).items())
        if value is not None
    ]
    if query:
        url = f"{url}?{urlencode(query)}"
    return url


def get_path_and_query(url):
    """
    Return the path and query string portion of a URL, which is what we
    record as the provenance key of every snapshot taken from that URL.
    """

    parts = urlsplit(url)
    if parts.query:
        return f"{parts.path}?{parts.query}"
    return parts.path


def with_query_param(url, name, value):
    """
    Return `url` with the query parameter `name` replaced by `value`, or
    removed entirely when `value` is `None`. Other parameters keep their
    order.
    """

    parts = urlsplit(url)
    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k != name
    ]
    if value is not None:
        query.append((name, _serialize_value(value)))
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment)
    )


def get_query_param(url, name, default=None):
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == name:
            return value
    return default
