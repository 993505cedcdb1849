"""
Главный файл Telegram-бота бронирования лодок клуба
"""
import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.fsm.storage.memory import MemoryStorage

from config import settings
from database.database import init_db
from handlers import user_handlers, admin_handlers
from middlewares.actor import ActorMiddleware
from services.confirmations import ConfirmationScheduler
from services.notifier import TelegramNotifier
from utils.scheduler import start_scheduler

# Настройка логирования
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main():
    """Основная функция запуска бота"""
    logger.info("Запуск бота...")
    settings.validate_bot()

    # Инициализация БД
    init_db()
    logger.info("База данных инициализирована")

    # Создание бота и диспетчера
    bot = Bot(token=settings.BOT_TOKEN)
    storage = MemoryStorage()
    dp = Dispatcher(storage=storage)

    # Участник и роль для каждого обновления
    dp.message.middleware(ActorMiddleware())
    dp.callback_query.middleware(ActorMiddleware())

    # Регистрация роутеров
    dp.include_router(user_handlers.router)
    dp.include_router(admin_handlers.router)

    # Фоновые проверки подтверждений и напоминаний;
    # тот же экземпляр использует обработчик /sweep
    sweeps = ConfirmationScheduler(TelegramNotifier(bot))
    dp['sweeps'] = sweeps
    scheduler = await start_scheduler(sweeps)

    try:
        logger.info("Бот успешно запущен")
        await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())
    finally:
        scheduler.shutdown()
        await bot.session.close()
        logger.info("Бот остановлен")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Бот остановлен пользователем")
    except Exception as e:
        logger.error(f"Критическая ошибка: {e}", exc_info=True)
