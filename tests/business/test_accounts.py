"""AccountService tests: login, account management rules, initial setup."""
import pytest

from business.accounts import AccountService
from business.auth import AuthContext, verify_token
from common.errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthorized
from config.business_config import business_config
from config.settings import settings

SECRET = "accounts-secret"

MANAGER = AuthContext("boss", "boss", "manager")
STAFF = AuthContext("sato", "sato", "staff")


@pytest.fixture
def service(temp_db):
    svc = AccountService(temp_db, secret=SECRET, token_ttl_hours=1,
                         min_password_length=8)
    svc.create_account({"username": "boss", "password": "bossPass1",
                        "name": "管理者", "role": "manager"})
    svc.create_account({"username": "sato", "password": "satoPass1",
                        "name": "佐藤", "role": "staff", "incentiveRate": 0.1})
    return svc


class TestLogin:

    def test_login_returns_token(self, service):
        """测试登录成功返回令牌。"""
        result = service.login("sato", "satoPass1")
        assert result["user"]["username"] == "sato"
        payload = verify_token(result["token"], SECRET)
        assert payload["role"] == "staff"

    def test_wrong_password(self, service):
        """测试密码错误时拒绝登录。"""
        with pytest.raises(Unauthorized):
            service.login("sato", "nope-nope")

    def test_unknown_user(self, service):
        """测试未知用户拒绝登录。"""
        with pytest.raises(Unauthorized):
            service.login("ghost", "whatever1")

    def test_missing_credentials(self, service):
        """测试缺少用户名或密码。"""
        with pytest.raises(InvalidInput):
            service.login("", "")


class TestCreateAccount:

    def test_requires_fields(self, service):
        """测试创建账号的必填字段。"""
        with pytest.raises(InvalidInput):
            service.create_account({"username": "x", "password": "longenough"})

    def test_rejects_unknown_role(self, service):
        """测试拒绝未知角色。"""
        with pytest.raises(InvalidInput):
            service.create_account({"username": "x", "password": "longenough",
                                    "name": "X", "role": "owner"})

    def test_rejects_short_password(self, service):
        """测试拒绝过短的密码。"""
        with pytest.raises(InvalidInput):
            service.create_account({"username": "x", "password": "short",
                                    "name": "X", "role": "staff"})

    def test_duplicate_username(self, service):
        """测试重复用户名冲突。"""
        with pytest.raises(Conflict):
            service.create_account({"username": "sato", "password": "longenough",
                                    "name": "X", "role": "staff"})

    def test_new_account_must_change_password(self, service):
        """测试新账号需要修改密码。"""
        account = service.create_account({"username": "suzuki", "password": "longenough",
                                          "name": "鈴木", "role": "staff"})
        assert account["requirePasswordChange"] is True


class TestUpdateAccount:

    def test_staff_cannot_update_others(self, service):
        """测试员工不能修改他人账号。"""
        with pytest.raises(Forbidden):
            service.update_account(STAFF, "boss", {"name": "x"})

    def test_missing_account(self, service):
        """测试修改不存在的账号。"""
        with pytest.raises(NotFound):
            service.update_account(MANAGER, "ghost", {"name": "x"})

    def test_self_password_change_needs_current(self, service):
        """测试本人改密码需要当前密码。"""
        with pytest.raises(InvalidInput):
            service.update_account(STAFF, "sato", {"newPassword": "brandNew123"})
        with pytest.raises(Unauthorized):
            service.update_account(STAFF, "sato", {"currentPassword": "bad-bad-bad",
                                                   "newPassword": "brandNew123"})

    def test_self_password_change(self, service):
        """测试本人修改密码。"""
        updated = service.update_account(STAFF, "sato", {
            "currentPassword": "satoPass1", "newPassword": "brandNew123",
        })
        assert updated["requirePasswordChange"] is False
        assert service.login("sato", "brandNew123")["user"]["username"] == "sato"

    def test_new_password_length_checked(self, service):
        """测试新密码长度校验。"""
        with pytest.raises(InvalidInput):
            service.update_account(STAFF, "sato", {"currentPassword": "satoPass1",
                                                   "newPassword": "short"})

    def test_manager_resets_password_without_current(self, service):
        """测试管理者无需当前密码即可重置。"""
        service.update_account(MANAGER, "sato", {"newPassword": "resetPass1"})
        assert service.login("sato", "resetPass1")["token"]

    def test_staff_cannot_change_own_role(self, service):
        """测试员工不能修改自己的角色和奖励比例。"""
        updated = service.update_account(STAFF, "sato", {"role": "manager",
                                                         "incentiveRate": 0.9})
        assert updated["role"] == "staff"
        assert updated["incentiveRate"] == 0.1

    def test_manager_changes_rate_and_role(self, service):
        """测试管理者修改奖励比例和角色。"""
        updated = service.update_account(MANAGER, "sato", {"incentiveRate": 0.2})
        assert updated["incentiveRate"] == 0.2
        updated = service.update_account(MANAGER, "sato", {"role": "manager"})
        assert updated["role"] == "manager"
        assert updated["incentiveRate"] is None


class TestDeleteAccount:

    def test_cannot_delete_self(self, service):
        """测试不能删除自己的账号。"""
        with pytest.raises(InvalidInput):
            service.delete_account(MANAGER, "boss")

    def test_delete_other(self, service, temp_db):
        """测试删除其他账号。"""
        service.delete_account(MANAGER, "sato")
        assert temp_db.accounts.get("sato") is None


class TestSetup:

    def test_seeds_empty_database(self, temp_db):
        """测试在空数据库上初始化数据。"""
        svc = AccountService(temp_db, secret=SECRET)
        result = svc.setup()
        assert result["skipped"] is False
        assert result["counts"] == {
            "users": 1,
            "locations": len(business_config.get_sample_locations()),
            "staff": len(business_config.get_sample_staff()),
        }
        login = svc.login("manager", settings.default_manager_password)
        assert login["user"]["role"] == "manager"
        assert login["user"]["requirePasswordChange"] is True

    def test_second_run_skipped(self, temp_db):
        """测试第二次初始化被跳过。"""
        svc = AccountService(temp_db, secret=SECRET)
        svc.setup()
        staff_before = temp_db.get_staff_list()
        assert svc.setup()["skipped"] is True
        assert temp_db.get_staff_list() == staff_before

    def test_existing_master_data_kept(self, temp_db):
        """测试保留已存在的主数据。"""
        temp_db.staff.add("佐藤", item_id="custom")
        result = AccountService(temp_db, secret=SECRET).setup()
        assert result["counts"]["staff"] == len(business_config.get_sample_staff()) - 1
        names = [s["name"] for s in temp_db.get_staff_list()]
        assert names.count("佐藤") == 1
