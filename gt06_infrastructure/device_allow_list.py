"""
Device allow-list for GT06 LOGIN frames
Built from config.json (inline IMEIs) and an optional CSV file with an 'imei' column
"""
import os
import csv
import logging
from typing import Iterable, Optional, Set

from config import Config
from gt06_infrastructure.input_validator import validate_imei

logger = logging.getLogger(__name__)


def normalize_imei(imei) -> Optional[str]:
    """Validate an IMEI and drop leading zeros, the form LOGIN decoding produces."""
    validated = validate_imei(imei)
    if validated is None:
        return None
    return validated.lstrip('0') or '0'


class DeviceAllowList:
    """Predicate deciding whether a device may log in. A disabled list accepts everything."""

    def __init__(self, imeis: Iterable[str] = (), enabled: bool = True):
        self.enabled = enabled
        self._imeis: Set[str] = set()
        for imei in imeis:
            self.add(imei)

    def add(self, imei) -> bool:
        """Add one IMEI; returns False (and logs) when it is not a valid IMEI."""
        normalized = normalize_imei(imei)
        if normalized is None:
            return False
        self._imeis.add(normalized)
        return True

    def __call__(self, imei: str) -> bool:
        if not self.enabled:
            return True
        imei_str = str(imei).strip()
        # Decoded LOGIN identifiers lose their zero padding and may be shorter than 15 digits
        return imei_str.isdigit() and (imei_str.lstrip('0') or '0') in self._imeis

    def __contains__(self, imei: str) -> bool:
        return self(imei)

    def __len__(self) -> int:
        return len(self._imeis)

    @classmethod
    def from_csv(cls, csv_file: str, enabled: bool = True) -> 'DeviceAllowList':
        """
        Load IMEIs from a CSV file with an 'imei' header column.

        Args:
            csv_file: Absolute path, or relative to the current working directory

        Raises:
            FileNotFoundError: If the file does not exist
            KeyError: If the file has no 'imei' column
        """
        allow_list = cls(enabled=enabled)
        with open(csv_file, 'r', encoding='utf-8', newline='') as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames or 'imei' not in reader.fieldnames:
                raise KeyError(f"CSV file {csv_file} has no 'imei' column")
            skipped = 0
            for row in reader:
                imei_str = (row.get('imei') or '').strip()
                # Spreadsheet exports write long numbers in scientific notation
                if 'E+' in imei_str or 'e+' in imei_str:
                    imei_str = str(int(float(imei_str)))
                if not allow_list.add(imei_str):
                    skipped += 1
        logger.info(f"Loaded {len(allow_list)} IMEIs from {csv_file}" + (f" ({skipped} invalid rows skipped)" if skipped else ""))
        return allow_list

    @classmethod
    def from_config(cls) -> Optional['DeviceAllowList']:
        """
        Build the allow-list from the 'device_allow_list' config section.

        Returns:
            DeviceAllowList, or None when the section is disabled (accept all devices)
        """
        settings = Config.load().get('device_allow_list', {})
        if not settings.get('enabled', False):
            return None

        csv_file = settings.get('csv_file')
        if csv_file:
            if not os.path.isabs(csv_file):
                csv_file = os.path.join(os.getcwd(), csv_file)
            allow_list = cls.from_csv(csv_file)
        else:
            allow_list = cls()

        for imei in settings.get('imeis', []):
            allow_list.add(imei)

        logger.info(f"Device allow-list enabled with {len(allow_list)} IMEIs")
        return allow_list
