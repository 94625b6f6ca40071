#!/usr/bin/env python
"""检查视觉模型服务

按当前环境变量构造视觉服务，初始化并报告实际生效的服务。
可选传入一张图片路径，执行一次 OCR 验证端到端调用。

用法:
    python scripts/check_vision_service.py [image.png]
"""

import asyncio
import sys

from PIL import Image

from docreader import FailoverVisionClient, create_vision_client
from docreader.document import image_to_data_url
from docreader.vision_factory import resolve_provider


async def check_vision_service(image_path: str = None) -> bool:
    print("=" * 60)
    print("检查视觉模型服务")
    print("=" * 60)

    print(f"\n[步骤 1] 服务选择: {resolve_provider()}")
    client = create_vision_client()
    print(f"✅ 已创建 {client.name}")

    try:
        print("\n[步骤 2] 初始化服务")
        try:
            await client.initialize()
        except Exception as e:
            print(f"❌ 初始化失败: {e}")
            return False

        if isinstance(client, FailoverVisionClient):
            print(f"✅ 当前生效: {client.active.name}（use_fallback={client.use_fallback}）")
        else:
            print(f"✅ 当前生效: {client.name}")

        if not image_path:
            return True

        print(f"\n[步骤 3] 识别图片: {image_path}")
        with Image.open(image_path) as image:
            data_url = image_to_data_url(image)

        result = await client.extract_text(data_url)
        if not result.success:
            print(f"❌ 识别失败: {result.error}")
            return False

        print(f"✅ 识别成功（{result.source} / {result.model}），{len(result.text)} 字符:")
        print(result.text[:500])
        return True

    finally:
        await client.aclose()


if __name__ == '__main__':
    ok = asyncio.run(check_vision_service(sys.argv[1] if len(sys.argv) > 1 else None))
    print("\n" + "=" * 60)
    print("检查通过！" if ok else "检查失败")
    print("=" * 60)
    sys.exit(0 if ok else 1)
