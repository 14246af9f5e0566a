"""
Well-behaved server subject: prints every byte received on any connection.

Usage: server <port>
"""
import socket
import sys
import threading

stdout_lock = threading.Lock()


def handle(conn):
    with conn:
        while True:
            data = conn.recv(2048)
            if not data:
                break
            with stdout_lock:
                sys.stdout.buffer.write(data)
                sys.stdout.buffer.flush()


def main():
    port = int(sys.argv[1])
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    srv.bind(("127.0.0.1", port))
    srv.listen(128)
    sys.stderr.write(f"listening on {port}\n")
    sys.stderr.flush()
    while True:
        conn, _ = srv.accept()
        threading.Thread(target=handle, args=(conn,), daemon=True).start()


main()
