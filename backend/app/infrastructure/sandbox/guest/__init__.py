"""
Sandbox guest package.

Everything in here runs inside the child interpreter spawned by the
executor. It must only import the standard library, BeautifulSoup and its
own modules: the host application is deliberately out of reach.
"""
