"""
server_wrapper package
----------------------
Supervisor for a dockerized game server process. Rebuilds the startup
argument vector, launches and restarts the server, mirrors its output
into durable logs, watches for stalls and bridges the operator console
to either the server's stdin or its remote admin (RCON) channel.
"""

__version__ = "0.4.0"
