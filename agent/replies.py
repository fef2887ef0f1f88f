from models.transaction import TransactionDraft

UNVERIFIED_NUMBER = (
    "❌ Nomor WhatsApp Anda belum terdaftar atau belum terverifikasi.\n\n"
    "Silakan verifikasi nomor WhatsApp Anda di aplikasi FinTrack terlebih dahulu."
)

COULD_NOT_UNDERSTAND = (
    "❌ Maaf, saya tidak dapat memahami pesan transaksi Anda.\n\n"
    "Format contoh:\n"
    "• \"Beli makan siang 50rb\"\n"
    "• \"Gaji bulanan 5jt\"\n"
    "• \"Bayar listrik 200rb dari bank\"\n"
    "• \"Beli makan 50rb pakai cash\""
)

RELOGIN_REQUIRED = "❌ Error: Tidak dapat mengautentikasi. Silakan login ulang di aplikasi."

NO_WALLET = "No wallet found. Please create a wallet first."

INVALID_WALLET_SELECTION = "Invalid wallet selection. Please choose a number or wallet name."

NO_PENDING_TRANSACTION = "No pending transaction. Please send a new transaction message."


def format_idr(amount: float) -> str:
    """Rp 1.500.000 style, no decimals."""
    return "Rp " + f"{round(amount):,}".replace(",", ".")


def transaction_created(draft: TransactionDraft) -> str:
    lines = [
        "✅ Transaksi berhasil dibuat!",
        "",
        f"📊 Tipe: {draft.kind_label}",
        f"💰 Jumlah: {format_idr(draft.amount)}",
        f"📝 Deskripsi: {draft.description}",
    ]
    if draft.category:
        lines.append(f"🏷️ Kategori: {draft.category}")
    lines.append(f"📅 Tanggal: {draft.occurred_on.isoformat()}")
    return "\n".join(lines)


def transaction_failed(error: str) -> str:
    return f"❌ Gagal membuat transaksi: {error}"
