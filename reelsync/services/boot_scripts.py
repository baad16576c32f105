"""Boot-time user data for the distribution host.

The host runs user data through cloud-init. The cloud-config part forces the
shell script to run on every boot, not only the first one, so a stop/start
cycle applies the latest change.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass

from reelsync.db.models import SyncEventKind

_BOUNDARY = "==REELSYNC-BOUNDARY=="

_USER_DATA_TEMPLATE = """Content-Type: multipart/mixed; boundary="{boundary}"
MIME-Version: 1.0

--{boundary}
Content-Type: text/cloud-config; charset="us-ascii"
MIME-Version: 1.0
Content-Transfer-Encoding: 7bit
Content-Disposition: attachment; filename="cloud-config.txt"

#cloud-config
cloud_final_modules:
- [scripts-user, always]

--{boundary}
Content-Type: text/x-shellscript; charset="us-ascii"
MIME-Version: 1.0
Content-Transfer-Encoding: 7bit
Content-Disposition: attachment; filename="userdata.txt"

{script}
--{boundary}--
"""


@dataclass(frozen=True, slots=True)
class HostLayout:
    web_root: str
    namespace: str
    server_unit: str

    @property
    def directory(self) -> str:
        return f"{self.web_root.rstrip('/')}/{self.namespace.strip('/')}"


def creation_script(*, bucket: str, key: str, filename: str, layout: HostLayout) -> str:
    target = f"{layout.directory}/{filename}"
    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        f"mkdir -p {shlex.quote(layout.directory)}",
        f"aws s3 cp {shlex.quote(f's3://{bucket}/{key}')} {shlex.quote(target)}",
        f"systemctl restart {shlex.quote(layout.server_unit)}",
    ]
    return "\n".join(lines)


def removal_script(*, filename: str, layout: HostLayout) -> str:
    target = f"{layout.directory}/{filename}"
    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        f"rm -f {shlex.quote(target)}",
        f"systemctl restart {shlex.quote(layout.server_unit)}",
    ]
    return "\n".join(lines)


def render_user_data(
    kind: SyncEventKind,
    *,
    bucket: str,
    key: str,
    filename: str,
    layout: HostLayout,
) -> str:
    if kind == SyncEventKind.created:
        script = creation_script(bucket=bucket, key=key, filename=filename, layout=layout)
    else:
        script = removal_script(filename=filename, layout=layout)
    return _USER_DATA_TEMPLATE.format(boundary=_BOUNDARY, script=script)


__all__ = ["HostLayout", "creation_script", "removal_script", "render_user_data"]
