def handler(name="world"):
    """
    Greets someone.
    @param {string} name who to greet
    @returns {string} greeting
    """
    return f"hello {name}"
