#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写必要的配置项，生成 .env 文件。
"""
import os
import secrets

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置分组：(分组标题, [(env_key, 描述, 默认值, 是否必填)])
CONFIG_SECTIONS = [
    ("数据库配置", [
        ("DATABASE_URL", "数据库连接地址", "sqlite:///data/studio.db", False),
    ]),
    ("Web 平台配置", [
        ("WEB_HOST", "Web 监听地址", "0.0.0.0", False),
        ("WEB_PORT", "Web 监听端口", "8080", False),
    ]),
    ("认证配置", [
        # 默认值每次运行随机生成
        ("JWT_SECRET", "登录令牌签名密钥", None, True),
        ("TOKEN_TTL_HOURS", "登录令牌有效期（小时）", "24", False),
        ("DEFAULT_MANAGER_PASSWORD", "初始管理员密码（首次登录后需修改）", "ChangeMe123!", False),
    ]),
    ("业务规则", [
        ("REWARD_PER_RESERVATION", "每件预约的奖励金额（日元）", "1000", False),
        ("LEDGER_RETRY_ATTEMPTS", "奖励台账调整失败时的最大尝试次数", "3", False),
    ]),
    ("日志", [
        ("LOG_LEVEL", "日志级别（DEBUG/INFO/WARNING/ERROR）", "INFO", False),
    ]),
]


def _ask(key, desc, default, required):
    """提示用户输入单个配置项"""
    req_tag = " [必填]" if required else ""
    default_hint = f" (默认: {default})" if default else ""
    print(f"📝 {desc}{req_tag}")

    while True:
        value = input(f"  {key}={default_hint}: ").strip() or default
        if required and not value:
            print(f"  ❌ {key} 是必填项，请输入值。")
            continue
        print()
        return value


def main():
    print()
    print("=" * 60)
    print("  予約管理システム 配置向导")
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
        "# 予約管理システム 配置文件",
        "# 由 scripts/setup_env.py 自动生成",
    ]

    for title, items in CONFIG_SECTIONS:
        env_lines.append("")
        env_lines.append(f"# === {title} ===")
        for key, desc, default, required in items:
            if key == "JWT_SECRET":
                default = secrets.token_urlsafe(32)
            env_lines.append(f"{key}={_ask(key, desc, default, required)}")

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write("\n".join(env_lines) + "\n")

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库并启动应用：")
    print("    python scripts/init_db.py")
    print("    python app.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
