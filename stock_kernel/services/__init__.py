"""Write services.  Each flushes into a caller-owned Session; none commit."""
