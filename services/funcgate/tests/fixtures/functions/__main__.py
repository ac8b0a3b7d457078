def handler():
    """
    Root endpoint.
    @returns {string} message
    """
    return "root"
