import ftplib
import logging
import os
import posixpath
import time
from datetime import datetime, timezone

log = logging.getLogger("uploader")

FTP_TIMEOUT = 30


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


class FTPUploader:
    """Pushes the generated feed to a plain FTP (or FTPS) server."""

    def __init__(self, host=None, user=None, password=None, remote_path="/schedule.ics",
                 enabled=False, secure=False, local_path="public/schedule.ics"):
        self.host = host
        self.user = user
        self.password = password
        self.remote_path = remote_path or "/schedule.ics"
        self.enabled = bool(enabled)
        self.secure = bool(secure)
        self.local_path = local_path

    @classmethod
    def from_settings(cls, settings: dict):
        ftp = settings.get("ftp") or {}
        return cls(
            host=ftp.get("host"),
            user=ftp.get("user"),
            password=ftp.get("password"),
            remote_path=ftp.get("remote_path"),
            enabled=ftp.get("enabled"),
            secure=ftp.get("secure"),
            local_path=settings.get("output") or "public/schedule.ics",
        )

    def is_configured(self):
        return bool(self.enabled and self.host and self.user and self.password)

    def _connect(self):
        client = ftplib.FTP_TLS(timeout=FTP_TIMEOUT) if self.secure else ftplib.FTP(timeout=FTP_TIMEOUT)
        try:
            client.connect(self.host)
            client.login(self.user, self.password)
            if self.secure:
                client.prot_p()
        except (OSError, EOFError, ftplib.Error):
            self._close(client)
            raise
        return client

    @staticmethod
    def _close(client):
        try:
            client.quit()
        except (OSError, EOFError, ftplib.Error):
            client.close()

    @staticmethod
    def _ensure_dir(client, remote_dir):
        """mkdir -p on the server; existing directories are fine."""
        path = ""
        for part in remote_dir.strip("/").split("/"):
            path = f"{path}/{part}" if remote_dir.startswith("/") or path else part
            try:
                client.mkd(path)
            except ftplib.error_perm:
                pass  # already there

    def upload_file(self, local_path, remote_path=None):
        if not self.is_configured():
            log.info("FTP upload skipped - not configured or disabled")
            return {"success": False, "reason": "not_configured"}

        target = remote_path or self.remote_path
        client = None
        try:
            if not os.path.exists(local_path):
                raise FileNotFoundError(f"Local file not found: {local_path}")
            size = os.path.getsize(local_path)

            log.info("Connecting to FTP server %s", self.host)
            client = self._connect()

            remote_dir = posixpath.dirname(target)
            if remote_dir not in ("", "/", "."):
                try:
                    self._ensure_dir(client, remote_dir)
                    log.debug("ensured remote directory %s", remote_dir)
                except ftplib.Error as ex:
                    log.warning("Could not ensure directory %s (%s), proceeding", remote_dir, ex)

            log.info("Uploading %s (%d bytes) -> %s", os.path.basename(local_path), size, target)
            with open(local_path, "rb") as fh:
                client.storbinary(f"STOR {target}", fh)

            return {
                "success": True,
                "remote_path": target,
                "file_size": size,
                "upload_time": _now_iso(),
            }
        except (OSError, EOFError, ftplib.Error) as ex:
            log.error("FTP upload failed: %s", ex)
            return {"success": False, "error": str(ex), "error_time": _now_iso()}
        finally:
            if client is not None:
                self._close(client)

    def upload_schedule(self):
        return self.upload_file(self.local_path)

    def upload_multiple(self, files, pause=1.0):
        """``files`` is an iterable of (local_path, remote_path) pairs."""
        if not self.is_configured():
            log.info("FTP upload skipped - not configured or disabled")
            return {"success": False, "reason": "not_configured"}

        files = list(files)
        results = []
        for n, (local_path, remote_path) in enumerate(files):
            if n and pause:
                time.sleep(pause)
            result = self.upload_file(local_path, remote_path)
            results.append({"local_path": local_path, "remote_path": remote_path, **result})

        return {
            "success": all(r["success"] for r in results),
            "results": results,
            "total_files": len(files),
            "success_count": sum(1 for r in results if r["success"]),
        }

    def test_connection(self):
        if not self.is_configured():
            return {"success": False, "reason": "not_configured"}

        log.info("Testing FTP connection to %s", self.host)
        client = None
        try:
            client = self._connect()
        except (OSError, EOFError, ftplib.Error) as ex:
            log.error("FTP connection test failed: %s", ex)
            return {"success": False, "error": str(ex), "test_time": _now_iso()}
        finally:
            if client is not None:
                self._close(client)
        log.info("FTP connection test successful")
        return {"success": True, "message": "Connection successful", "test_time": _now_iso()}

    def get_status(self):
        return {
            "enabled": self.enabled,
            "configured": self.is_configured(),
            "host": f"{self.host[:10]}..." if self.host else None,
            "user": f"{self.user[:5]}..." if self.user else None,
            "remote_path": self.remote_path,
        }
