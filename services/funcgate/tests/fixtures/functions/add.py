async def handler(a, b=0):
    """
    Adds two numbers.
    @param {integer} a first operand
    @param {number{0,100}} b second operand
    @returns {number} total
    """
    return a + b
