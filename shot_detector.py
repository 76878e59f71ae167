# Basketball Make Detector - frame source -> detector -> rule engine -> make events

import argparse
import dataclasses
import logging
import os
import sys
import threading
import time
from datetime import datetime

import cv2
from tqdm import tqdm

from detection import NormBox, ShotDetectionError
from event_engine import EXPORT_PRESETS, compute_clip_ranges, save_events
from frame_sampler import VideoFrameSampler
from geometry import DEFAULT_REGION_EXPAND, derive_region, expand_and_clamp
from inference_engine import ModelUnavailableError, YoloInferenceEngine
from overlay import render_preview
from shot_rule_engine import ShotRuleConfig, ShotRuleEngine

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "Yolo-Weights/best.pt"
# Sampling cap when inference runs without an accelerator, so the detector keeps up
CONSTRAINED_MAX_FPS = 3.0


class DetectionCancelled(Exception):
    """Raised at a frame boundary after cancel(); carries the makes found so far"""

    def __init__(self, events):
        super().__init__(f"Detection cancelled after {len(events)} makes")
        self.events = events


class DebugLogger:
    """
    Diagnostic trail sink: buffers the rule engine's per-frame reasoning and
    flushes it to `<video>_<model>_debug_<timestamp>.txt`.

    Passed to ShotRuleEngine as its `diagnostics` sink; the engine itself never
    touches the file.
    """

    def __init__(self, input_video="video.mp4", model_path=DEFAULT_MODEL, log_dir=None, flush_every=200):
        self.video_name = os.path.splitext(os.path.basename(str(input_video)))[0]
        self.model_name = os.path.splitext(os.path.basename(model_path))[0]
        self.log_dir = log_dir
        self.flush_every = flush_every
        self.debug_log_file = None
        self.logger = None
        self._buffer = []

    def init_debug_logger(self, start_datetime):
        """
        Create the log file, named with the same timestamp as the events file

        Args:
            start_datetime: Session start time
        """
        timestamp = start_datetime.strftime('%Y-%m-%d_%H-%M-%S')
        filename = f"{self.video_name}_{self.model_name}_debug_{timestamp}.txt"
        if self.log_dir:
            os.makedirs(self.log_dir, exist_ok=True)
            filename = os.path.join(self.log_dir, filename)
        self.debug_log_file = filename

        # Unique logger per session so handlers never collide
        self.logger = logging.getLogger(f"MakeDetectorDebug_{self.video_name}_{self.model_name}_{timestamp}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        if self.logger.hasHandlers():
            self.logger.handlers.clear()

        file_handler = logging.FileHandler(self.debug_log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        self.logger.addHandler(file_handler)

        self.logger.info("=== Debug Log Started ===")
        self.logger.info(f"Video: {self.video_name}")
        self.logger.info(f"Model: {self.model_name}")
        self.logger.info(f"Start time: {start_datetime.strftime('%Y-%m-%d %H:%M:%S')}")
        self.logger.info("=" * 50)

    def debug(self, message):
        """Buffer one reasoning line; written out every `flush_every` lines"""
        self._buffer.append(message)
        if len(self._buffer) >= self.flush_every:
            self.flush()

    def info(self, message):
        self.flush()
        if self.logger:
            self.logger.info(message)

    def warning(self, message):
        self.flush()
        if self.logger:
            self.logger.warning(message)

    def error(self, message):
        self.flush()
        if self.logger:
            self.logger.error(message)

    def flush(self):
        if not self.logger:
            return
        for line in self._buffer:
            self.logger.debug(line)
        self._buffer = []
        for handler in self.logger.handlers:
            handler.flush()

    def close(self):
        if self.logger:
            self.flush()
            self.logger.info("=== Debug Log Ended ===")
            for handler in self.logger.handlers[:]:
                handler.close()
                self.logger.removeHandler(handler)
            self.logger = None


class ShotLogger:
    """Collects the makes of one session and writes the events file for the clip stage"""

    def __init__(self, input_video="video.mp4", model_path=DEFAULT_MODEL, start_datetime=None):
        self.input_video = str(input_video)
        self.model_path = model_path
        self.start_time = time.time()
        self.start_datetime = start_datetime or datetime.now()
        self.makes = []
        self.frame_count = 0
        self.cancelled = False

    def log_make(self, event, snapshot):
        """
        Record one emitted make with the reasoning that confirmed it

        Args:
            event: MakeEvent returned by the rule engine
            snapshot: DebugSnapshot taken right after the event
        """
        self.makes.append({
            "time": event.time,
            "type": event.type,
            "reason": snapshot.last_trigger_reason,
            "confirmed_via": snapshot.last_confirmation,
            "makes_count": snapshot.makes_count,
        })

    def events_filename(self):
        video_name = os.path.splitext(os.path.basename(self.input_video))[0]
        model_name = os.path.splitext(os.path.basename(self.model_path))[0]
        timestamp = self.start_datetime.strftime('%Y-%m-%d_%H-%M-%S')
        return f"{video_name}_{model_name}_events_{timestamp}.json"

    def save_log(self, events, filename=None):
        """Write the ordered [{"time", "type"}] list consumed by the clip exporter"""
        return save_events(events, filename or self.events_filename())

    def print_summary(self, events, clip_ranges=None):
        print("\n" + "=" * 60)
        print("📊 Make Detection Report")
        print("=" * 60)
        print(f"🎥 Video: {self.input_video}")
        print(f"⏱️  Processing time: {time.time() - self.start_time:.2f}s")
        print(f"🎞️  Sampled frames: {self.frame_count}")
        if self.cancelled:
            print("⚠️  Detection was cancelled, results are partial")
        print(f"\n🏀 Makes detected: {len(events)}")
        for i, make in enumerate(self.makes, 1):
            print(f"  {i:>2}. t={make['time']:7.2f}s  via {make['confirmed_via']:<10}  {make['reason']}")
        if clip_ranges:
            print(f"\n✂️  Clip ranges ({len(clip_ranges)}):")
            for clip in clip_ranges:
                print(f"  [{clip.start:7.2f}s - {clip.end:7.2f}s]  {clip.duration:.1f}s")


class ShotDetector:
    """
    Drives a frame source and a detector through the rule engine, one frame at a time

    Args:
        detector: Object with detect(frame, timestamp, region) -> list[Detection];
            a YoloInferenceEngine on `model_path` when omitted
        sampler: Object with frames(source, fps, start_seconds, max_seconds) and
            duration(source); a VideoFrameSampler when omitted
        config: ShotRuleConfig for the rule engine
        diagnostics: Sink for the rule engine's reasoning trail (e.g. DebugLogger)
        constrained: Cap sampling at CONSTRAINED_MAX_FPS; auto-detected from the
            detector's device when None
        render_previews: Pass annotated frames to on_progress instead of raw ones
        output_video: Optional path of an annotated output video
        shot_logger: Optional ShotLogger notified of every make
    """

    def __init__(self, detector=None, sampler=None, config=None, diagnostics=None, constrained=None,
                 model_path=DEFAULT_MODEL, render_previews=False, output_video=None, shot_logger=None):
        self.detector = detector if detector is not None else YoloInferenceEngine(model_path)
        self.sampler = sampler if sampler is not None else VideoFrameSampler()
        self.rule_engine = ShotRuleEngine(config, diagnostics=diagnostics)
        self.diagnostics = diagnostics
        if constrained is None:
            constrained = getattr(self.detector, 'device', None) == 'cpu'
        self.constrained = constrained
        self.render_previews = render_previews or output_video is not None
        self.output_video = output_video
        self.shot_logger = shot_logger
        self.video_writer = None
        self._cancel = threading.Event()

    def cancel(self):
        """Request cancellation; honored at the next frame boundary"""
        self._cancel.set()

    def effective_fps(self, fps):
        if self.constrained:
            return min(fps, CONSTRAINED_MAX_FPS)
        return fps

    def detect_makes(self, source, fps=12.0, start_offset=0.0, max_duration=None, region=None,
                     on_progress=None, show_progress=False):
        """
        Run make detection over [start_offset, start_offset + max_duration]

        Args:
            source: Video passed to the sampler
            fps: Target sampling rate (reduced in constrained environments)
            start_offset: Seconds to skip at the start of the video
            max_duration: Seconds to process; None runs to the end of the video
            region: Optional NormBox restricting inference to a region of interest
            on_progress: Called per frame with (fraction, DebugSnapshot, preview image, detections)
            show_progress: Show a tqdm progress bar

        Returns:
            list[MakeEvent]: Makes sorted ascending by time

        Raises:
            DetectionCancelled: cancel() was called; partial makes on `.events`
            ShotDetectionError: detector unavailable or the video could not be decoded
        """
        self.rule_engine.reset()
        self._cancel.clear()

        effective_fps = self.effective_fps(fps)
        if effective_fps < fps:
            logger.info(f"Constrained environment: sampling at {effective_fps:g} fps instead of {fps:g}")

        if max_duration is None:
            limit = max(0.0, self.sampler.duration(source) - start_offset)
        else:
            limit = max(0.0, max_duration)

        progress_bar = tqdm(total=int(limit * effective_fps) + 1, desc="Detecting makes", unit='frames',
                            disable=not show_progress)
        try:
            for frame in self.sampler.frames(source, fps=effective_fps, start_seconds=start_offset,
                                             max_seconds=max_duration):
                if self._cancel.is_set():
                    raise DetectionCancelled(self.rule_engine.detected_makes)

                detections = self._detect(frame, region)
                event = self.rule_engine.consume_frame(frame.timestamp, detections)
                snapshot = self.rule_engine.debug_snapshot()
                if event is not None:
                    logger.info(f"✅ Make at {event.time:.2f}s ({snapshot.last_trigger_reason})")
                    if self.shot_logger:
                        self.shot_logger.log_make(event, snapshot)
                if self.shot_logger:
                    self.shot_logger.frame_count += 1

                preview = frame.image
                if self.render_previews and frame.image is not None:
                    preview = render_preview(frame.image, detections, snapshot)
                    self._write_frame(preview, effective_fps)

                if on_progress:
                    fraction = min(1.0, max(0.0, frame.timestamp - start_offset) / max(0.001, limit))
                    on_progress(fraction, snapshot, preview, detections)
                progress_bar.set_postfix(makes=snapshot.makes_count)
                progress_bar.update(1)
        finally:
            progress_bar.close()
            self._release_writer()
            flush = getattr(self.diagnostics, 'flush', None)
            if flush:
                flush()

        if on_progress:
            on_progress(1.0, self.rule_engine.debug_snapshot(), None, [])

        return sorted(self.rule_engine.detected_makes, key=lambda e: e.time)

    def lock_hoop_region(self, source, user_box, fps=6.0, seconds=1.0, start_offset=0.0):
        """
        Derive the inference region from a user-drawn box around the hoop

        Samples about a second of video inside `user_box` and grows the most
        confident hoop found there; falls back to growing the user box itself.

        Returns:
            NormBox: Region of interest for detect_makes()
        """
        detections = []
        try:
            for frame in self.sampler.frames(source, fps=fps, start_seconds=start_offset, max_seconds=seconds):
                detections.extend(self.detector.detect(frame.image, frame.timestamp, user_box))
        except Exception as e:
            logger.warning(f"Hoop lock failed, using the drawn region: {e}")
            return expand_and_clamp(user_box, DEFAULT_REGION_EXPAND)
        return derive_region(detections, user_box)

    def _detect(self, frame, region):
        try:
            return self.detector.detect(frame.image, frame.timestamp, region)
        except ModelUnavailableError:
            raise
        except Exception as e:
            # A single failed inference only costs this frame
            logger.warning(f"Frame {frame.index} (t={frame.timestamp:.2f}s): detector failed, "
                           f"treating as no detections: {e}")
            return []

    def _write_frame(self, image, fps):
        if not self.output_video:
            return
        if self.video_writer is None:
            height, width = image.shape[:2]
            fourcc = cv2.VideoWriter_fourcc(*'mp4v')
            self.video_writer = cv2.VideoWriter(self.output_video, fourcc, fps, (width, height))
        self.video_writer.write(image)

    def _release_writer(self):
        if self.video_writer is not None:
            self.video_writer.release()
            self.video_writer = None


def parse_param_overrides(pairs):
    """
    Turn ["cooldown_seconds=4", ...] into a ShotRuleConfig

    Raises:
        ValueError: Unknown parameter name or malformed pair
    """
    known = {f.name: f.type for f in dataclasses.fields(ShotRuleConfig)}
    overrides = {}
    for pair in pairs or []:
        if '=' not in pair:
            raise ValueError(f"Expected name=value, got '{pair}'")
        name, value = (part.strip() for part in pair.split('=', 1))
        if name not in known:
            raise ValueError(f"Unknown parameter '{name}'. Known: {', '.join(sorted(known))}")
        caster = int if known[name] in (int, 'int') else float
        overrides[name] = caster(value)
    return dataclasses.replace(ShotRuleConfig(), **overrides)


def main(argv=None):
    from model_configs import get_model_config, list_all_configs

    parser = argparse.ArgumentParser(description='Basketball Make Detector - find made baskets in a video')
    parser.add_argument('--input', type=str, help='Input video file path')
    parser.add_argument('--output', type=str, help='Annotated output video file path')
    parser.add_argument('--model', type=str, default=DEFAULT_MODEL, help=f'Ball + hoop model (default: {DEFAULT_MODEL})')
    parser.add_argument('--config', type=str, help='Use predefined model configuration (e.g., balanced, real_time)')
    parser.add_argument('--list-models', action='store_true', help='List all available model configurations')
    parser.add_argument('--fps', type=float, default=None, help='Sampling rate (default: 12, or the config value)')
    parser.add_argument('--start', type=float, default=0.0, help='Start offset in seconds')
    parser.add_argument('--max-duration', type=float, default=None, help='Seconds to process (default: whole video)')
    parser.add_argument('--roi', type=float, nargs=4, metavar=('X', 'Y', 'W', 'H'),
                        help='Normalized box drawn around the hoop (top-left origin)')
    parser.add_argument('--events-out', type=str, help='Events JSON path (default: generated name)')
    parser.add_argument('--log-dir', type=str, default=None, help='Directory for the debug log')
    parser.add_argument('--preset', choices=sorted(EXPORT_PRESETS), default='standard', help='Clip timing preset')
    parser.add_argument('--pre', type=float, help='Seconds kept before each make (overrides preset)')
    parser.add_argument('--post', type=float, help='Seconds kept after each make (overrides preset)')
    parser.add_argument('--merge-gap', type=float, help='Merge clips closer than this (overrides preset)')
    parser.add_argument('--param', action='append', default=[], metavar='NAME=VALUE',
                        help='Override a rule engine parameter, e.g. --param cooldown_seconds=4')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')

    if args.list_models:
        list_all_configs()
        return 0
    if not args.input:
        parser.error('--input is required')

    model_path = args.model
    fps = args.fps
    min_confidence = None
    if args.config:
        model_config = get_model_config(args.config)
        if not model_config:
            print("❌ Invalid configuration. Use --list-models to see available options.")
            return 1
        model_path = model_config['model']
        min_confidence = model_config['min_confidence']
        fps = fps or model_config['fps']
        print(f"🎯 Using configuration '{args.config}': {model_config['description']}")
    fps = fps or 12.0

    try:
        rule_config = parse_param_overrides(args.param)
    except ValueError as e:
        parser.error(str(e))

    start_datetime = datetime.now()
    debug_logger = DebugLogger(args.input, model_path, log_dir=args.log_dir)
    debug_logger.init_debug_logger(start_datetime)
    shot_logger = ShotLogger(args.input, model_path, start_datetime=start_datetime)

    try:
        return _run_session(args, model_path, min_confidence, fps, rule_config, debug_logger, shot_logger)
    finally:
        debug_logger.close()
        print(f"📝 Debug log saved to: {debug_logger.debug_log_file}")


def _run_session(args, model_path, min_confidence, fps, rule_config, debug_logger, shot_logger):
    events = []
    detector = None
    try:
        detector = ShotDetector(
            detector=YoloInferenceEngine(model_path, min_confidence=min_confidence),
            config=rule_config,
            diagnostics=debug_logger,
            output_video=args.output,
            shot_logger=shot_logger,
        )
        region = None
        if args.roi:
            region = detector.lock_hoop_region(args.input, NormBox(*args.roi), start_offset=args.start)
            print(f"🔒 Hoop region: x={region.x:.3f} y={region.y:.3f} w={region.width:.3f} h={region.height:.3f}")

        events = detector.detect_makes(args.input, fps=fps, start_offset=args.start,
                                       max_duration=args.max_duration, region=region, show_progress=True)
    except DetectionCancelled as e:
        shot_logger.cancelled = True
        events = e.events
    except KeyboardInterrupt:
        shot_logger.cancelled = True
        events = detector.rule_engine.detected_makes if detector is not None else []
    except ShotDetectionError as e:
        debug_logger.error(f"Detection failed: {e}")
        print(f"❌ Detection failed: {e}")
        return 1

    preset = EXPORT_PRESETS[args.preset]
    video_duration = args.start + args.max_duration if args.max_duration else None
    if video_duration is None:
        try:
            video_duration = VideoFrameSampler().duration(args.input)
        except ShotDetectionError:
            video_duration = max((e.time for e in events), default=0.0)
    clips = compute_clip_ranges(
        events, video_duration,
        pre=args.pre if args.pre is not None else preset['pre'],
        post=args.post if args.post is not None else preset['post'],
        merge_gap=args.merge_gap if args.merge_gap is not None else preset['merge_gap'],
    )

    events_file = shot_logger.save_log(events, args.events_out)
    shot_logger.print_summary(events, clips)
    print(f"\n✅ Events saved to: {events_file}")

    debug_logger.info(f"Processing completed. {len(events)} makes.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
