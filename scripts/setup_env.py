#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写配置项（直接回车使用默认值），生成 .env 文件。
"""
import os

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "数据库连接地址", "sqlite:///data/studio.db"),

    # === Autopilot ===
    ("AUTOPILOT_ENABLED", "启动时自动运行巡检（true/false）", "true"),
    ("AUTOPILOT_INTERVAL_MINUTES", "巡检间隔（分钟）", "60"),
    ("TENANT_PAGE_SIZE", "巡检遍历租户的分页大小", "100"),

    # === 事件总线 ===
    ("EVENT_BUS_INTERVAL_SECONDS", "队列消费间隔（秒）", "1.0"),
    ("EVENT_BUS_MAX_RETRIES", "每个事件的最大处理次数", "3"),

    # === 催款 ===
    ("REMINDER_LEVEL1_DAYS", "逾期多少天发一级催款", "3"),
    ("REMINDER_LEVEL2_DAYS", "逾期多少天发二级催款", "10"),
    ("REMINDER_LEVEL3_DAYS", "逾期多少天发三级催款", "20"),

    # === 日志 ===
    ("LOG_LEVEL", "日志级别", "INFO"),
]

SECTION_NAMES = {
    "DATABASE": "# === 数据库配置 ===",
    "AUTOPILOT": "# === Autopilot 配置 ===",
    "TENANT": "# === Autopilot 配置 ===",
    "EVENT": "# === 事件总线配置 ===",
    "REMINDER": "# === 催款配置 ===",
    "LOG": "# === 日志配置 ===",
}


def main():
    print()
    print("=" * 60)
    print("  Studio Automation 配置向导")
    print("  生成 .env 配置文件")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"⚠️  检测到已有 .env 文件: {ENV_FILE}")
        choice = input("是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return
        print()

    env_lines = [
        "# Studio Automation 配置文件",
        "# 由 scripts/setup_env.py 自动生成",
    ]

    for key, desc, default in CONFIG_ITEMS:
        # 根据前缀分组显示，同一个 section header 只写一次
        header = SECTION_NAMES.get(key.split("_")[0], "# === 其他配置 ===")
        if header not in env_lines:
            env_lines.append("")
            env_lines.append(header)

        print(f"📝 {desc}")
        value = input(f"  {key}= (默认: {default}): ").strip()
        env_lines.append(f"{key}={value or default}")
        print()

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库：")
    print("    python scripts/init_db.py")
    print()
    print("  启动应用：")
    print("    python app.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
