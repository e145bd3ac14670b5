"""
Async CSV writer for LOGS mode
Uses aiofiles to append decoded GT06 records to trackdata/events/alarms CSV files
"""
import asyncio
import logging
import csv
import os
from typing import List, Dict, Any, Optional
import aiofiles
import io

from config import Config

logger = logging.getLogger(__name__)


class AsyncSaveToCSV:
    """
    Appends records to CSV files:
    - GPS fixes (record_type 'trackdata') -> trackdata.csv
    - every record -> events.csv
    - alarms (record_type 'alarm') -> alarms.csv
    """

    CSV_COLUMNS = [
        'server_time', 'imei', 'serial', 'gps_time', 'latitude', 'longitude',
        'speed', 'course', 'satellites', 'east', 'north', 'positioned', 'realtime',
        'lac', 'cell_id', 'mcc', 'mnc', 'is_valid'
    ]

    CSV_COLUMNS_EVENTS = [
        'server_time', 'imei', 'event', 'protocol', 'serial',
        'battery_level', 'alarm_code', 'text', 'payload'
    ]

    CSV_COLUMNS_ALARMS = [
        'server_time', 'imei', 'serial', 'alarm_code', 'payload'
    ]

    def __init__(self, directory: Optional[str] = None):
        """
        Args:
            directory: Output directory (default: csv_output.directory from config, 'logs')
        """
        self.directory = directory or Config.load().get('csv_output', {}).get('directory', 'logs')
        self._lock = asyncio.Lock()

    async def save(self, records: List[Dict[str, Any]], record_type: str) -> bool:
        """
        Append records of one record type.

        Args:
            records: Flattened event records
            record_type: 'trackdata', 'event' or 'alarm'

        Returns:
            bool: True when every file write succeeded
        """
        if not records:
            return True

        try:
            os.makedirs(self.directory, exist_ok=True)
            async with self._lock:
                if record_type == 'trackdata':
                    await self._append("trackdata.csv", self.CSV_COLUMNS, records)
                await self._append("events.csv", self.CSV_COLUMNS_EVENTS, records)
                if record_type == 'alarm':
                    await self._append("alarms.csv", self.CSV_COLUMNS_ALARMS, records)
            return True
        except OSError as e:
            logger.error(f"Error saving to CSV (async): {e}", exc_info=True)
            return False

    async def _append(self, filename: str, columns: List[str], records: List[Dict[str, Any]]):
        path = os.path.join(self.directory, filename)
        file_exists = os.path.exists(path)

        output = io.StringIO(newline='')
        writer = csv.DictWriter(output, fieldnames=columns, extrasaction='ignore')
        if not file_exists:
            writer.writeheader()
        for record in records:
            writer.writerow(self._convert_to_csv_row(record, columns))

        csv_content = output.getvalue()
        if csv_content:
            async with aiofiles.open(path, 'ab') as f:
                await f.write(csv_content.encode('utf-8'))
            logger.debug(f"✓ Saved {len(records)} records to {filename}")

    @staticmethod
    def _convert_to_csv_row(record: Dict[str, Any], columns: List[str]) -> Dict[str, str]:
        """Select the columns and render None as an empty cell and booleans as 0/1."""
        row = {}
        for column in columns:
            value = record.get(column)
            if value is None:
                row[column] = ''
            elif isinstance(value, bool):
                row[column] = '1' if value else '0'
            else:
                row[column] = str(value)
        return row
