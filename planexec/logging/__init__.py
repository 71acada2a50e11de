"""
Structured logging for planexec
"""
