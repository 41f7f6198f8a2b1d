from shop_backend.database import Base, DatabaseMixin, engine
from shop_backend.database.voucher.crud import VoucherCrud
from shop_backend.database.voucher_redemption.crud import VoucherRedemptionCrud
from shop_backend.database.voucher_usage.crud import VoucherUsageCrud


class Database(DatabaseMixin):
    """
    Основной класс базы данных, использующий композицию для доступа к CRUD-компонентам.
    Пример: db.voucher.get_voucher(), db.voucher_usage.get_usage()
    """

    def __init__(self):
        self.voucher = VoucherCrud()
        self.voucher_redemption = VoucherRedemptionCrud()
        self.voucher_usage = VoucherUsageCrud()

    @staticmethod
    async def create_tables():
        """
        Создает таблицы в базе данных, если они не существуют.
        """
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @staticmethod
    async def drop_tables():
        """
        Удаляет все таблицы. Используется в тестах.
        """
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)


db = Database()
