"""
HTTP gateway for planexec
"""
