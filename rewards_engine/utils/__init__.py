"""
Shared helpers: exceptions, HTTP error responses, logging and reward-day math.
"""
