#!/usr/bin/env python3
"""
Mock GT06 Tracker - Simulates GT06 GPS trackers sending frames to the parser node.

Each tracker logs in with its IMEI, then periodically sends GPS fixes, battery
STATUS frames and HEARTBEATs, and raises a low-battery ALARM once. Every frame
waits for its acknowledgment. Useful for:
- Load testing
- Resync testing (garbage bytes and frames split across writes)
- Connection drop scenarios

Usage:
    python mock_gt06_tracker.py --host localhost --port 5001 --trackers 10 --rate 5.0

    # Test specific scenarios:
    python mock_gt06_tracker.py --scenario load_test --trackers 100 --rate 1.0
    python mock_gt06_tracker.py --scenario noise_test
    python mock_gt06_tracker.py --scenario connection_drop

Environment Variables (for Docker):
    TRACKER_HOST: Target host (default: localhost)
    TRACKER_PORT: Target port (default: 5001)
    NUM_TRACKERS: Number of trackers to simulate (default: 10)
    SEND_RATE: Seconds between GPS fixes (default: 5.0)
    LOG_LEVEL: Logging level (default: INFO)
    IMEI_PREFIX: IMEI prefix for generated trackers (default: 356860820045)
"""

import argparse
import asyncio
import logging
import math
import os
import random
import signal
import time
from typing import List, Optional

from gt06_codec.models.frame import Frame
from gt06_codec.models.frame_type import FrameType
from gt06_codec.packet_builder import Gt06PacketBuilder, SerialCounter
from gt06_codec.stream_reassembler import StreamReassembler

logger = logging.getLogger('MockTracker')

ALARM_LOW_BATTERY = 0x02
LOW_BATTERY_LEVEL = 20
STATUS_EVERY = 5      # GPS fixes between STATUS frames
HEARTBEAT_EVERY = 10  # GPS fixes between HEARTBEAT frames
ACK_TIMEOUT = 10.0


class MockTracker:
    """Simulates a single GT06 tracker: random-walk position, draining battery."""

    def __init__(
        self,
        imei: str,
        host: str,
        port: int,
        base_lat: float = 24.8607,
        base_lon: float = 67.0011,
        send_rate: float = 5.0
    ):
        self.imei = imei
        self.host = host
        self.port = port
        self.send_rate = send_rate
        self.builder = Gt06PacketBuilder(imei, SerialCounter())
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None
        self._acks = StreamReassembler()
        self.connected = False
        self.packets_sent = 0
        self.acks_received = 0
        self._running = False

        self.current_lat = base_lat
        self.current_lon = base_lon
        self.speed = 0
        self.heading = random.randint(0, 359)
        self.battery = random.randint(60, 100)
        self.low_battery_alarm_sent = False
        self._fixes_sent = 0

    async def _wait_ack(self) -> Frame:
        """Read until one complete ack frame arrives; later acks stay buffered."""
        while True:
            for item in self._acks.feed(b""):
                if isinstance(item, Frame):
                    return item
            data = await asyncio.wait_for(self.reader.read(256), timeout=ACK_TIMEOUT)
            if not data:
                raise ConnectionResetError("Connection closed by server")
            # Buffered now, drained at the top of the loop
            self._acks.feed(data)

    async def send_frame(self, packet: bytes, wait_ack: bool = True) -> bool:
        """Write one frame (or any raw bytes) and optionally wait for its ack."""
        if not self.writer:
            return False
        self.writer.write(packet)
        await self.writer.drain()
        self.packets_sent += 1
        if not wait_ack:
            return True

        ack = await self._wait_ack()
        self.acks_received += 1
        logger.debug(f"[{self.imei}] ACK received: {ack!r}")
        return True

    async def connect(self) -> bool:
        """Connect to the parser and send LOGIN."""
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=10.0
            )
            self._acks.reset()
            self.writer.write(self.builder.login())
            await self.writer.drain()
            self.packets_sent += 1

            ack = await self._wait_ack()
            if ack.frame_type == FrameType.LOGIN:
                self.acks_received += 1
                self.connected = True
                logger.info(f"[{self.imei}] Connected and logged in")
                return True
            logger.warning(f"[{self.imei}] Unexpected reply to LOGIN: {ack!r}")
            return False

        except asyncio.TimeoutError:
            logger.error(f"[{self.imei}] Connection/LOGIN timeout")
            return False
        except (ConnectionError, OSError) as e:
            logger.error(f"[{self.imei}] Connection error: {e}")
            return False

    async def disconnect(self):
        """Close connection."""
        if self.writer:
            self.writer.close()
            try:
                await self.writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        self.writer = None
        self.connected = False
        logger.info(f"[{self.imei}] Disconnected (sent: {self.packets_sent}, acks: {self.acks_received})")

    def _simulate_movement(self, interval: float):
        """Random walk: speed and heading drift, position advances along the heading."""
        self.speed = max(0, min(120, self.speed + random.randint(-10, 15)))
        self.heading = (self.heading + random.randint(-30, 30)) % 360

        distance_km = self.speed * interval / 3600.0
        self.current_lat += distance_km / 111.0 * math.cos(math.radians(self.heading))
        self.current_lon += distance_km / (111.0 * max(math.cos(math.radians(self.current_lat)), 0.01)) \
            * math.sin(math.radians(self.heading))

    def next_frames(self) -> List[bytes]:
        """Frames for one send cycle: a GPS fix plus any due STATUS/HEARTBEAT/ALARM."""
        self._simulate_movement(self.send_rate)
        frames = [self.builder.gps(self.current_lat, self.current_lon, self.speed, self.heading,
                                   satellites=random.randint(6, 12))]
        self._fixes_sent += 1

        if self._fixes_sent % STATUS_EVERY == 0:
            self.battery = max(0, self.battery - random.randint(1, 5))
            frames.append(self.builder.status(self.battery))
            if self.battery < LOW_BATTERY_LEVEL and not self.low_battery_alarm_sent:
                frames.append(self.builder.alarm(ALARM_LOW_BATTERY))
                self.low_battery_alarm_sent = True
                logger.info(f"[{self.imei}] Low battery ({self.battery}%), ALARM sent")

        if self._fixes_sent % HEARTBEAT_EVERY == 0:
            frames.append(self.builder.heartbeat())

        return frames

    async def send_cycle(self) -> bool:
        if not self.connected:
            return False
        try:
            for packet in self.next_frames():
                await self.send_frame(packet)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"[{self.imei}] ACK timeout")
            return False
        except (ConnectionError, OSError) as e:
            logger.warning(f"[{self.imei}] Connection lost: {e}")
            self.connected = False
            return False

    async def run(self, duration: float = 0):
        """Run tracker for specified duration (0 = indefinite)."""
        self._running = True
        start_time = time.time()

        while self._running:
            if duration > 0 and (time.time() - start_time) > duration:
                break

            if not self.connected:
                if not await self.connect():
                    await asyncio.sleep(5)
                    continue

            if not await self.send_cycle():
                await asyncio.sleep(1)
                continue

            await asyncio.sleep(self.send_rate)

        await self.disconnect()

    def stop(self):
        self._running = False


class MockTrackerFleet:
    """Manages multiple mock trackers for load testing."""

    def __init__(
        self,
        host: str,
        port: int,
        num_trackers: int = 10,
        send_rate: float = 5.0,
        imei_prefix: str = "356860820045"
    ):
        self.host = host
        self.port = port
        self.num_trackers = num_trackers
        self.send_rate = send_rate
        self.imei_prefix = imei_prefix
        self.trackers: List[MockTracker] = []
        self._start_time = None

    def _generate_imeis(self) -> List[str]:
        """IMEIs are prefix + (100 + index), zero-filled to 15 digits."""
        imeis = []
        for i in range(self.num_trackers):
            suffix = str(100 + i).zfill(15 - len(self.imei_prefix))
            imeis.append((self.imei_prefix + suffix)[:15])
        return imeis

    async def run(self, duration: float = 0):
        """Run all trackers concurrently."""
        self._start_time = time.time()

        for imei in self._generate_imeis():
            self.trackers.append(MockTracker(
                imei=imei,
                host=self.host,
                port=self.port,
                base_lat=24.8607 + random.uniform(-0.05, 0.05),
                base_lon=67.0011 + random.uniform(-0.05, 0.05),
                send_rate=max(0.1, self.send_rate + random.uniform(-0.2, 0.2))
            ))

        logger.info(f"Starting {len(self.trackers)} mock trackers to {self.host}:{self.port}")
        logger.info(f"   Send rate: ~{self.send_rate}s per tracker, IMEI prefix: {self.imei_prefix}")

        # Staggered startup in batches
        batch_size = int(os.environ.get('BATCH_SIZE', '500'))
        batch_delay = float(os.environ.get('BATCH_DELAY', '2.0'))

        tasks = []
        for i in range(0, len(self.trackers), batch_size):
            for tracker in self.trackers[i:i + batch_size]:
                tasks.append(asyncio.create_task(tracker.run(duration)))
            if i + batch_size < len(self.trackers):
                await asyncio.sleep(batch_delay)

        await asyncio.gather(*tasks, return_exceptions=True)

    def stop(self):
        for tracker in self.trackers:
            tracker.stop()

    def get_stats(self) -> dict:
        total_sent = sum(t.packets_sent for t in self.trackers)
        total_acks = sum(t.acks_received for t in self.trackers)
        uptime = time.time() - self._start_time if self._start_time else 0

        return {
            'total_trackers': len(self.trackers),
            'connected': sum(1 for t in self.trackers if t.connected),
            'total_packets_sent': total_sent,
            'total_acks_received': total_acks,
            'ack_rate': (total_acks / total_sent * 100) if total_sent > 0 else 0,
            'low_battery_alarms': sum(1 for t in self.trackers if t.low_battery_alarm_sent),
            'uptime_seconds': int(uptime),
            'packets_per_minute': (total_sent / uptime * 60) if uptime > 0 else 0,
        }


async def run_load_test(args):
    """Run load test scenario."""
    fleet = MockTrackerFleet(
        host=args.host,
        port=args.port,
        num_trackers=args.trackers,
        send_rate=args.rate,
        imei_prefix=args.imei_prefix
    )

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def shutdown():
        logger.info("Shutdown signal received...")
        fleet.stop()
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    stats_task = None
    if args.stats_interval > 0:
        async def report_stats():
            while not shutdown_event.is_set():
                await asyncio.sleep(args.stats_interval)
                stats = fleet.get_stats()
                logger.info(f"STATS: trackers={stats['connected']}/{stats['total_trackers']}, "
                            f"sent={stats['total_packets_sent']}, acks={stats['total_acks_received']}, "
                            f"rate={stats['ack_rate']:.0f}%, ppm={stats['packets_per_minute']:.1f}, "
                            f"low_battery_alarms={stats['low_battery_alarms']}")
        stats_task = asyncio.create_task(report_stats())

    try:
        await fleet.run(duration=args.duration)
    finally:
        if stats_task:
            stats_task.cancel()
            try:
                await stats_task
            except asyncio.CancelledError:
                pass
        logger.info(f"FINAL STATS: {fleet.get_stats()}")


async def run_noise_test(args):
    """Send garbage between frames and split frames across writes; every frame must still be acked."""
    logger.info("Running noise/resync test")

    tracker = MockTracker(imei=f"{args.imei_prefix}001"[:15].ljust(15, '0'), host=args.host, port=args.port)
    if not await tracker.connect():
        logger.error("Failed to connect")
        return

    expected = 0
    for i in range(10):
        garbage = bytes(random.randint(0, 0x77) for _ in range(random.randint(1, 20)))
        frame = tracker.next_frames()[0]
        split = random.randint(1, len(frame) - 1)

        tracker.writer.write(garbage + frame[:split])
        await tracker.writer.drain()
        await asyncio.sleep(0.05)
        tracker.writer.write(frame[split:])
        await tracker.writer.drain()
        tracker.packets_sent += 1
        expected += 1

        try:
            ack = await tracker._wait_ack()
            tracker.acks_received += 1
            logger.info(f"Frame {i + 1}: {len(garbage)} noise bytes, split at {split} -> ACK {ack!r}")
        except asyncio.TimeoutError:
            logger.warning(f"Frame {i + 1}: no ACK")

    await tracker.disconnect()
    logger.info(f"Noise test complete: frames={expected}, acks={tracker.acks_received - 1}")


async def run_connection_drop_test(args):
    """Test connection drop and reconnect."""
    logger.info("Running connection drop test")

    tracker = MockTracker(imei=f"{args.imei_prefix}002"[:15].ljust(15, '0'), host=args.host, port=args.port,
                          send_rate=1.0)

    for attempt in range(3):
        logger.info(f"Connection attempt {attempt + 1}")

        if not await tracker.connect():
            logger.error("Failed to connect")
            continue

        for _ in range(3):
            await tracker.send_cycle()
            await asyncio.sleep(0.5)

        logger.info("Simulating connection drop...")
        await tracker.disconnect()
        await asyncio.sleep(2)

    logger.info(f"Connection drop test complete: sent={tracker.packets_sent}, acks={tracker.acks_received}")


def main():
    env_host = os.environ.get('TRACKER_HOST', 'localhost')
    env_port = int(os.environ.get('TRACKER_PORT', '5001'))
    env_trackers = int(os.environ.get('NUM_TRACKERS', '10'))
    env_rate = float(os.environ.get('SEND_RATE', '5.0'))
    env_log_level = os.environ.get('LOG_LEVEL', 'INFO')
    env_imei_prefix = os.environ.get('IMEI_PREFIX', '356860820045')
    env_stats_interval = int(os.environ.get('STATS_INTERVAL', '30'))

    parser = argparse.ArgumentParser(
        description='Mock GT06 Tracker for testing the parser node',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Basic test with 10 trackers
    python mock_gt06_tracker.py --host localhost --port 5001 --trackers 10

    # High load test
    python mock_gt06_tracker.py --trackers 500 --rate 1.0

    # Run specific scenarios
    python mock_gt06_tracker.py --scenario noise_test
    python mock_gt06_tracker.py --scenario connection_drop

Environment Variables (for Docker):
    TRACKER_HOST, TRACKER_PORT, NUM_TRACKERS, SEND_RATE, LOG_LEVEL, IMEI_PREFIX, STATS_INTERVAL
        """
    )

    parser.add_argument('--host', default=env_host, help=f'Parser host (default: {env_host})')
    parser.add_argument('--port', type=int, default=env_port, help=f'Parser port (default: {env_port})')
    parser.add_argument('--trackers', type=int, default=env_trackers, help=f'Number of trackers (default: {env_trackers})')
    parser.add_argument('--rate', type=float, default=env_rate, help=f'Seconds between GPS fixes (default: {env_rate})')
    parser.add_argument('--duration', type=float, default=0, help='Test duration in seconds (0=indefinite)')
    parser.add_argument('--scenario', choices=['load_test', 'noise_test', 'connection_drop'],
                        default='load_test', help='Test scenario to run')
    parser.add_argument('--imei-prefix', default=env_imei_prefix, dest='imei_prefix',
                        help=f'IMEI prefix for generated trackers (default: {env_imei_prefix})')
    parser.add_argument('--stats-interval', type=int, default=env_stats_interval, dest='stats_interval',
                        help=f'Stats reporting interval in seconds, 0 to disable (default: {env_stats_interval})')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else getattr(logging, env_log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info("=" * 60)
    logger.info("MOCK GT06 TRACKER")
    logger.info("=" * 60)
    logger.info(f"Scenario: {args.scenario}")
    logger.info(f"Target: {args.host}:{args.port}")
    logger.info(f"Trackers: {args.trackers}, Rate: {args.rate}s, IMEI prefix: {args.imei_prefix}")
    logger.info(f"Duration: {'indefinite' if args.duration == 0 else f'{args.duration}s'}")
    logger.info("=" * 60)

    scenarios = {
        'load_test': run_load_test,
        'noise_test': run_noise_test,
        'connection_drop': run_connection_drop_test,
    }
    try:
        asyncio.run(scenarios[args.scenario](args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == '__main__':
    main()
