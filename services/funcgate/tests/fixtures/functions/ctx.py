def handler(tag="", context=None):
    """
    Describes its own execution context.
    @param {string} tag
    @returns {object}
    """
    return {
        "name": context.name,
        "path": context.path,
        "uuid": context.uuid,
        "method": context.http.method,
        "params": context.params,
        "mode": context.mode,
        "providers": context.providers,
    }
