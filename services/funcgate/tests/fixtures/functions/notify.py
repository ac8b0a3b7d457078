def handler():
    """
    @background
    @returns {boolean}
    """
    return True
