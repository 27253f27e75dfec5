"""
Kiosk Presence 基础使用示例

用回放数据源模拟一位访客走近终端、停下注视，然后离开
"""

import sys
from pathlib import Path

# 添加项目根目录到Python路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio
from loguru import logger

from presence import ConfigManager, ProximityEngine
from presence.engagement import EngagementEventType, KioskBehaviors, KioskDispatcher
from presence.perception import ReplayLandmarkSource
from presence.perception.core import FaceDetection, FrameBatch, Landmark, PoseDetection
from presence.utils import setup_logging


def build_frame(cx: float, score: int, looking: bool = True) -> FrameBatch:
    """按肩宽构造一帧姿态和人脸关键点"""
    half = score / 400.0
    pose = [None] * 33
    pose[11] = Landmark(cx - half, 0.5)
    pose[12] = Landmark(cx + half, 0.5)

    face = [None] * 468
    face[1] = Landmark(cx if looking else cx + 0.03, 0.5)
    face[33] = Landmark(cx - 0.03, 0.48)
    face[263] = Landmark(cx + 0.03, 0.48)

    return FrameBatch(
        poses=(PoseDetection(landmarks=tuple(pose)),),
        faces=(FaceDetection(landmarks=tuple(face)),)
    )


class ConsoleBehaviors(KioskBehaviors):
    """把终端行为输出到日志"""

    def start_ambient_audio(self, people_count, max_proximity):
        logger.info(f"[终端] 播放环境音乐 (人数={people_count}, 最近距离={max_proximity})")

    def stop_ambient_audio(self):
        logger.info("[终端] 停止环境音乐")

    async def start_greeting(self, person_id, context):
        logger.info(f"[终端] 问候 {person_id} (距离={context.get('proximity')})")

    async def end_greeting(self, person_id):
        logger.info(f"[终端] 结束问候 {person_id}")

    def open_staff_checkin(self, person_id, context):
        logger.info(f"[终端] 打开员工签到 ({person_id})")

    def close_staff_checkin(self):
        logger.info("[终端] 关闭员工签到")


async def main():
    """主函数"""
    manager = ConfigManager()
    setup_logging(manager.get("system.log_level", "INFO"))

    config = manager.engine_config()
    config.update({"detection_interval_ms": 50, "stare_duration_ms": 500})

    # 走近 -> 停下注视 -> 转头 -> 离开
    frames = [build_frame(0.30 + 0.04 * i, score) for i, score in enumerate((20, 30, 45, 62, 70))]
    frames += [build_frame(0.46, 72) for _ in range(20)]
    frames += [build_frame(0.46, 60, looking=False), build_frame(0.40, 30, looking=False)]
    frames += [FrameBatch() for _ in range(20)]

    source = ReplayLandmarkSource(frames, name="lobby-demo")
    engine = ProximityEngine(config, source=source)
    KioskDispatcher(engine.bus, ConsoleBehaviors()).attach()

    async def on_session_ended(event):
        logger.info(
            f"会话记录: 触发={event.get('triggered_action')} 结果={event.get('outcome')} "
            f"时长={event.get('total_duration_ms', 0) / 1000:.1f}s"
        )

    engine.bus.subscribe(EngagementEventType.SESSION_ENDED, on_session_ended)

    if not await engine.enable():
        logger.error(f"启用失败: {engine.error}")
        return

    try:
        while not source.exhausted:
            await asyncio.sleep(0.1)
        logger.info(f"统计: {engine.get_statistics()['sessions']}")
    finally:
        await engine.disable()


if __name__ == "__main__":
    asyncio.run(main())
