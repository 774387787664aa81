"""Linux storage backend (lsblk, udisksctl, mount, du)."""
import json
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import psutil

from stickplan.core.config import StickplanConfig, get_config
from stickplan.core.errors import CollaboratorIOError, MountError, UnmountError
from stickplan.core.logger import get_logger
from stickplan.core.retry import retry
from stickplan.models.device import DeviceDescriptor
from stickplan.models.partition import MountInfo, Partition, PartitionDescriptor
from stickplan.services.backends.base import StorageBackend

logger = get_logger(__name__)

_UDISKS_MOUNTED = re.compile(r"Mounted /dev/\S+ at (.+?)\.?$")
_DU_BYTES = re.compile(r"^(\d+)")

# Canned layout for mock mode: a current-schema USB flash drive
MOCK_DEVICES: Dict[str, DeviceDescriptor] = {
    "sdb": DeviceDescriptor(
        device="sdb", size=16_000_000_000, removable=True, system_internal=False,
        connection_bus="usb", vendor="Mock", model="Live Stick", serial="MOCK0001",
    ),
}
MOCK_PARTITIONS: Dict[str, List[PartitionDescriptor]] = {
    "sdb": [
        PartitionDescriptor("sdb", 1, 1_048_576, 209_715_200, "0xef", "EFI", "vfat"),
        PartitionDescriptor("sdb", 2, 210_763_776, 4_000_000_000, "0x07", "Exchange", "exfat"),
        PartitionDescriptor("sdb", 3, 4_210_763_776, 7_500_000_000, "0x83", "persistence", "ext4"),
        PartitionDescriptor("sdb", 4, 11_710_763_776, 4_200_000_000, "0x83", "system", "ext4"),
    ],
}
MOCK_SYSTEM_PARTITIONS = {"sdb4"}
MOCK_DIRECTORY_SIZE = 250_000_000
MOCK_USED_SPACE = 1_000_000_000


class LinuxStorageBackend(StorageBackend):
    """Storage backend for Linux hosts running udisks2."""

    def __init__(self, mock: bool = False, config: Optional[StickplanConfig] = None):
        super().__init__(mock=mock)
        self.config = config or get_config()
        self._mock_mounted: Dict[str, str] = {}

    # -----------------------------
    #  Enumeration
    # -----------------------------
    def list_devices(self) -> List[str]:
        if self.mock:
            return sorted(MOCK_DEVICES)

        data = self._lsblk(["-d", "-o", "NAME,TYPE"])
        return [
            dev["name"] for dev in data.get("blockdevices", [])
            if dev.get("type") in ("disk", "rom")
        ]

    def describe_device(self, device: str) -> DeviceDescriptor:
        if self.mock:
            try:
                return MOCK_DEVICES[device]
            except KeyError:
                raise CollaboratorIOError(f"MOCK: no such device {device}", target=device) from None

        data = self._lsblk(
            ["-d", "-o", "NAME,SIZE,TYPE,RM,HOTPLUG,TRAN,VENDOR,MODEL,SERIAL", f"/dev/{device}"]
        )
        devices = data.get("blockdevices", [])
        if not devices:
            raise CollaboratorIOError(f"lsblk reported nothing for /dev/{device}", target=device)
        info = devices[0]

        return DeviceDescriptor(
            device=device,
            size=int(info.get("size") or 0),
            removable=self._read_removable(device, info),
            optical=info.get("type") == "rom",
            system_internal=not _as_bool(info.get("hotplug")),
            connection_bus=(info.get("tran") or "").lower(),
            vendor=(info.get("vendor") or "").strip(),
            model=(info.get("model") or "").strip(),
            serial=(info.get("serial") or "").strip(),
        )

    def list_partitions(self, device: str) -> List[PartitionDescriptor]:
        if self.mock:
            return list(MOCK_PARTITIONS.get(device, []))

        data = self._lsblk(
            ["-o", "NAME,TYPE,PARTN,START,SIZE,PARTTYPE,LABEL,FSTYPE", f"/dev/{device}"]
        )
        partitions = []
        for disk in data.get("blockdevices", []):
            for child in disk.get("children", []) or []:
                if child.get("type") != "part":
                    continue
                partitions.append(PartitionDescriptor(
                    device=device,
                    number=int(child["partn"]),
                    offset=int(child.get("start") or 0) * 512,
                    size=int(child.get("size") or 0),
                    table_type=(child.get("parttype") or "").lower(),
                    label=child.get("label") or "",
                    fs_type=child.get("fstype") or "",
                ))

        partitions.sort(key=lambda p: p.number)
        logger.info(f"found {len(partitions)} partitions on {device}")
        return partitions

    def find_device_for_mount_point(self, mount_point: str) -> Optional[str]:
        if self.mock:
            return "sdb4" if mount_point == self.config.live_medium_path else None

        try:
            mounts = Path("/proc/mounts").read_text().splitlines()
        except OSError as e:
            raise CollaboratorIOError(f"Failed to read /proc/mounts: {e}") from e

        for line in mounts:
            tokens = line.split(" ")
            if len(tokens) < 2:
                continue
            source, target = tokens[0], tokens[1].replace("\\040", " ")
            if source.startswith("/dev/") and target == mount_point:
                return source[len("/dev/"):]
        return None

    # -----------------------------
    #  Mounting
    # -----------------------------
    def mount_paths(self, partition: Partition) -> List[str]:
        if self.mock:
            path = self._mock_mounted.get(partition.name)
            return [path] if path else []

        result = self._run(
            ["findmnt", "-rn", "-o", "TARGET", "-S", f"/dev/{partition.name}"],
            timeout=self.config.mount_timeout,
            check=False,
        )
        # findmnt exits with 1 when nothing is mounted
        if result.returncode not in (0, 1):
            raise CollaboratorIOError(
                f"findmnt failed for /dev/{partition.name}: {result.stderr.strip()}",
                target=partition.name,
            )
        return [line.replace("\\x20", " ") for line in result.stdout.splitlines() if line]

    def mount(self, partition: Partition) -> MountInfo:
        mount_paths = self.mount_paths(partition)
        if mount_paths:
            logger.debug(f"{partition.name} already mounted at {mount_paths[0]}")
            return MountInfo(mount_paths[0], already_mounted=True)

        if self.mock:
            path = f"/media/mock/{partition.name}"
            logger.info(f"MOCK: Would mount /dev/{partition.name} at {path}")
            self._mock_mounted[partition.name] = path
            return MountInfo(path, already_mounted=False)

        try:
            result = self._run(
                ["udisksctl", "mount", "--no-user-interaction", "-b", f"/dev/{partition.name}"],
                timeout=self.config.mount_timeout,
            )
        except CollaboratorIOError as e:
            raise MountError(f"Failed to mount /dev/{partition.name}: {e}", target=partition.name) from e

        match = _UDISKS_MOUNTED.search(result.stdout.strip())
        if not match:
            raise MountError(
                f"Unexpected udisksctl output for /dev/{partition.name}: {result.stdout.strip()}",
                target=partition.name,
            )
        mount_path = match.group(1)
        logger.info(f"mounted /dev/{partition.name} at {mount_path}")
        return MountInfo(mount_path, already_mounted=False)

    def unmount(self, partition: Partition) -> bool:
        attempt = retry(
            max_attempts=self.config.unmount_attempts,
            delay=self.config.unmount_delay,
            backoff=1.5,
        )(self._unmount_once)
        return attempt(partition)

    def _unmount_once(self, partition: Partition) -> bool:
        # An earlier attempt may have succeeded after timing out,
        # so check the mount state every round.
        if not self.mount_paths(partition):
            logger.debug(f"/dev/{partition.name} was not mounted")
            return True

        if self.mock:
            logger.info(f"MOCK: Would unmount /dev/{partition.name}")
            self._mock_mounted.pop(partition.name, None)
            return True

        try:
            self._run(
                ["udisksctl", "unmount", "--no-user-interaction", "-b", f"/dev/{partition.name}"],
                timeout=self.config.mount_timeout,
            )
        except CollaboratorIOError as e:
            self._log_busy_processes(partition)
            raise UnmountError(
                f"Failed to unmount /dev/{partition.name}: {e}", target=partition.name
            ) from e
        return True

    def _log_busy_processes(self, partition: Partition) -> None:
        result = self._run(
            ["fuser", "-v", "-m", f"/dev/{partition.name}"],
            timeout=self.config.mount_timeout,
            check=False,
        )
        if result.returncode == 0:
            logger.info(
                f"/dev/{partition.name} is still used by:\n{result.stdout}{result.stderr}"
            )

    def mount_squashfs_layers(self, system_mount_path: str) -> List[str]:
        if self.mock:
            return ["/tmp/mock-ro/ro1"]

        images = sorted(Path(system_mount_path, "live").glob("*.squashfs"))
        if not images:
            raise MountError(f"No system images below {system_mount_path}/live")

        tmp_dir = Path(tempfile.mkdtemp(prefix="stickplan-ro-"))
        mount_points: List[str] = []
        try:
            for index, image in enumerate(images, start=1):
                ro_dir = tmp_dir / f"ro{index}"
                ro_dir.mkdir()
                self._run(
                    ["mount", "-o", "loop,ro", str(image), str(ro_dir)],
                    timeout=self.config.mount_timeout,
                )
                mount_points.append(str(ro_dir))
        except CollaboratorIOError as e:
            self.release_overlay(None, mount_points)
            shutil.rmtree(tmp_dir, ignore_errors=True)
            raise MountError(f"Failed to mount system images of {system_mount_path}: {e}") from e

        # overlayfs lists the upper-most layer first; later images stack on earlier ones
        return list(reversed(mount_points))

    def mount_overlay(self, read_write_path: str, read_only_layer_paths: Sequence[str]) -> str:
        if self.mock:
            return "/tmp/mock-merged"

        lower_dirs = ":".join([read_write_path, *read_only_layer_paths])
        merged = tempfile.mkdtemp(prefix="stickplan-merged-")
        try:
            # Only lower layers: the merged view is read-only
            self._run(
                ["mount", "-t", "overlay", "overlay", "-o", f"lowerdir={lower_dirs}", merged],
                timeout=self.config.mount_timeout,
            )
        except CollaboratorIOError as e:
            shutil.rmtree(merged, ignore_errors=True)
            raise MountError(f"Failed to mount overlay of {read_write_path}: {e}") from e
        return merged

    def release_overlay(self, merged_path: Optional[str], read_only_layer_paths: Sequence[str]) -> None:
        if self.mock:
            return

        failures = []
        for mount_point in ([merged_path] if merged_path else []) + list(read_only_layer_paths):
            try:
                self._run(["umount", mount_point], timeout=self.config.mount_timeout)
            except CollaboratorIOError as e:
                logger.warning(f"Failed to unmount {mount_point}: {e}")
                failures.append(mount_point)

        if not failures:
            temp_dirs = {str(Path(p).parent) for p in read_only_layer_paths}
            if merged_path:
                temp_dirs.add(merged_path)
            for temp_dir in sorted(temp_dirs):
                logger.debug(f"recursively deleting {temp_dir}")
                shutil.rmtree(temp_dir, ignore_errors=True)

        if failures:
            raise UnmountError(f"Failed to release temporary mounts: {', '.join(failures)}")

    # -----------------------------
    #  Inspection
    # -----------------------------
    def has_squashfs_system_layout(self, mount_path: str) -> bool:
        if self.mock:
            return any(mount_path.endswith(name) for name in MOCK_SYSTEM_PARTITIONS)

        live_dir = Path(mount_path, "live")
        return live_dir.is_dir() and any(live_dir.glob("*.squashfs"))

    def measure_directory_size(self, path: str) -> int:
        if self.mock:
            return MOCK_DIRECTORY_SIZE

        if not Path(path).exists():
            logger.warning(f"{path} not found in data partition")
            return 0

        result = self._run(["du", "-sb", path], timeout=self.config.measure_timeout)
        match = _DU_BYTES.match(result.stdout)
        if not match:
            raise CollaboratorIOError(f"Unexpected du output for {path}: {result.stdout!r}", target=path)
        size = int(match.group(1))
        logger.info(f"size of {path}: {size}")
        return size

    def filesystem_used_space(self, mount_path: str) -> int:
        if self.mock:
            return MOCK_USED_SPACE

        try:
            usage = psutil.disk_usage(mount_path)
        except OSError as e:
            raise CollaboratorIOError(f"Failed to query filesystem at {mount_path}: {e}", target=mount_path) from e
        # total - free, not "used": reserved blocks count as used here
        return usage.total - usage.free

    # -----------------------------
    #  Utility helpers
    # -----------------------------
    def _run(self, cmd: List[str], timeout: int, check: bool = True) -> subprocess.CompletedProcess:
        logger.debug(f"CMD {' '.join(cmd)}")
        try:
            return subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=timeout)
        except subprocess.CalledProcessError as e:
            raise CollaboratorIOError(
                f"{cmd[0]} exited with {e.returncode}: {(e.stderr or '').strip()}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CollaboratorIOError(f"{cmd[0]} timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise CollaboratorIOError(f"{cmd[0]} not found: {e}") from e

    def _lsblk(self, args: List[str]) -> Dict:
        result = self._run(["lsblk", "-J", "-b", *args], timeout=self.config.mount_timeout)
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise CollaboratorIOError(f"Unparseable lsblk output: {e}") from e

    def _read_removable(self, device: str, info: Dict) -> bool:
        # udisks reports every USB drive as removable; sysfs has the real flag
        try:
            return Path(f"/sys/block/{device}/removable").read_text().strip() == "1"
        except OSError:
            return _as_bool(info.get("rm"))


def _as_bool(value) -> bool:
    """lsblk emits booleans as JSON bools or "0"/"1" depending on version."""
    if isinstance(value, str):
        return value.strip() in ("1", "true")
    return bool(value)
